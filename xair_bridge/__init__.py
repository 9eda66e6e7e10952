# xair_bridge/__init__.py
from .config import MixerConfig, ServerConfig, TimingConfig
from .engine import MixerBridge
from .settings import AppSettings, load_settings
from .state import BridgeState, EventCallback

__all__ = [
    "MixerBridge",
    "BridgeState",
    "EventCallback",
    "MixerConfig",
    "ServerConfig",
    "TimingConfig",
    "AppSettings",
    "load_settings",
]

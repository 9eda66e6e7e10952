# xair_bridge/radio.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from .settings import RadioSoftwareConfig

logger = logging.getLogger(__name__)


@dataclass
class RelayResult:
    command: str
    success: bool
    status_code: Optional[int] = None
    response: str = ""
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"command": self.command, "success": self.success}
        if self.status_code is not None:
            d["statusCode"] = self.status_code
        if self.response:
            d["response"] = self.response
        if self.error:
            d["error"] = self.error
        return d


class RadioRelay:
    """
    Forwards automation commands to the radio playout software.

    mAirList: POST http://host:port/execute, form field `command`, HTTP Basic
    auth (realm "RESTRemote"). Never raises: every outcome is a RelayResult.
    """

    def __init__(self, config: Optional[RadioSoftwareConfig] = None, timeout: float = 5.0) -> None:
        self.timeout = float(timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self.config: Optional[RadioSoftwareConfig] = None
        self.configure(config)

    def configure(self, config: Optional[RadioSoftwareConfig]) -> None:
        self.config = config if config is not None and config.enabled else None
        if self.config is not None:
            logger.info("Radio relay: %s at %s:%d", self.config.type, self.config.host, self.config.port)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def dispatch(self, command: str) -> RelayResult:
        cfg = self.config
        if cfg is None:
            logger.warning("Radio software not configured, cannot execute %r", command)
            return RelayResult(command, False, error="radio software not configured")

        if cfg.type == "mairlist":
            return await self._mairlist(cfg, command)

        logger.warning("Radio software %r is not supported", cfg.type)
        return RelayResult(command, False, error=f"{cfg.type} is not supported")

    async def _mairlist(self, cfg: RadioSoftwareConfig, command: str) -> RelayResult:
        if not cfg.username or not cfg.password:
            logger.error("Missing username or password for mAirList")
            return RelayResult(command, False, error="missing mAirList credentials")

        url = f"http://{cfg.host}:{cfg.port}/execute"
        auth = aiohttp.BasicAuth(cfg.username, cfg.password)
        try:
            session = await self._get_session()
            async with session.post(url, data={"command": command}, auth=auth) as resp:
                body = await resp.text()
                if resp.status == 401:
                    logger.error("mAirList authentication failed (check username/password)")
                    return RelayResult(command, False, status_code=401, error="authentication failed")
                ok = 200 <= resp.status < 300
                if ok:
                    logger.info("mAirList executed %r (%d)", command, resp.status)
                else:
                    logger.error("mAirList rejected %r: HTTP %d", command, resp.status)
                return RelayResult(
                    command, ok, status_code=resp.status, response=body[:500],
                    error=None if ok else f"HTTP {resp.status}",
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("mAirList connection failed for %r: %r", command, e)
            return RelayResult(command, False, error=str(e) or e.__class__.__name__)

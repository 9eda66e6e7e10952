"""
Tests for speaker-mute automation.
"""

import json

import pytest

from xair_bridge.settings import AppSettings, SpeakerMuteConfig
from xair_bridge.speaker_mute import SpeakerMuteAutomation, effective_trigger_channels
from xair_bridge.state import BridgeState

from conftest import of_type, settle


class Sent:
    def __init__(self):
        self.messages = []

    def __call__(self, address, args=()):
        self.messages.append((address, [v for _t, v in args]))
        return True


def make_automation(cfg):
    state = BridgeState()
    sent = Sent()
    return SpeakerMuteAutomation(state, sent, cfg), state, sent


BUS_CFG = SpeakerMuteConfig(enabled=True, trigger_channels=[3], mute_type="bus", bus_number=1, threshold=10)


class TestEffectiveTriggers:
    """Tests for resolving the trigger channel set."""

    def test_static_channels(self):
        assert effective_trigger_channels(BUS_CFG, {3: "Host"}) == [3]

    def test_names_resolved_each_time(self):
        """Test renamed channels are picked up on the next evaluation."""
        cfg = SpeakerMuteConfig(enabled=True, follow_channel_names=True, trigger_channel_names=["Host", "Guest"])
        names = {1: "Music", 2: "host", 7: "Guest"}
        assert effective_trigger_channels(cfg, names) == [2, 7]
        names[2] = "Music 2"
        names[9] = "HOST"
        assert effective_trigger_channels(cfg, names) == [9, 7]

    def test_unresolvable_name_skipped(self):
        cfg = SpeakerMuteConfig(enabled=True, follow_channel_names=True, trigger_channel_names=["Nobody", "Host"])
        assert effective_trigger_channels(cfg, {4: "Host"}) == [4]

    def test_duplicate_names_lowest_channel(self):
        cfg = SpeakerMuteConfig(enabled=True, follow_channel_names=True, trigger_channel_names=["Mic"])
        assert effective_trigger_channels(cfg, {8: "Mic", 3: "Mic"}) == [3]


class TestEvaluate:
    """Tests for mute decisions and commands."""

    def test_bus_mute_scenario(self):
        """Test 0 -> 20 mutes, 20 -> 25 keeps, 25 -> 5 unmutes."""
        auto, state, sent = make_automation(BUS_CFG)

        state.fader(3).value = 20
        assert auto.evaluate() is True
        assert sent.messages == [("/bus/1/mix/on", [0])]

        state.fader(3).value = 25
        assert auto.evaluate() is None
        assert len(sent.messages) == 1

        state.fader(3).value = 5
        assert auto.evaluate() is False
        assert sent.messages[-1] == ("/bus/1/mix/on", [1])
        assert not state.speaker_muted

    def test_mute_group(self):
        cfg = SpeakerMuteConfig(enabled=True, trigger_channels=[1], mute_type="muteGroup",
                                mute_group_number=2, threshold=10)
        auto, state, sent = make_automation(cfg)
        state.fader(1).value = 50
        auto.evaluate()
        state.fader(1).value = 0
        auto.evaluate()
        assert sent.messages == [("/config/mute/2", [1]), ("/config/mute/2", [0])]

    def test_muted_mic_does_not_trigger(self):
        auto, state, sent = make_automation(BUS_CFG)
        st = state.fader(3)
        st.value = 80
        st.muted = True
        assert auto.evaluate() is None
        assert sent.messages == []

    def test_threshold_is_inclusive(self):
        auto, state, _ = make_automation(BUS_CFG)
        state.fader(3).value = 10
        assert auto.evaluate() is True

    def test_disabled(self):
        cfg = SpeakerMuteConfig(enabled=False, trigger_channels=[3], threshold=10)
        auto, state, sent = make_automation(cfg)
        state.fader(3).value = 90
        assert auto.evaluate() is None
        assert auto.describe() == "disabled"

    def test_disable_while_muted_unmutes(self):
        """Test dropping the config releases speakers it had muted."""
        auto, state, sent = make_automation(BUS_CFG)
        state.fader(3).value = 50
        assert auto.evaluate() is True

        assert auto.configure(SpeakerMuteConfig(enabled=False)) is False
        assert sent.messages[-1] == ("/bus/1/mix/on", [1])
        assert not state.speaker_muted
        assert auto.evaluate() is None

    def test_target_change_moves_mute(self):
        """Test a new bus unmutes the old one, then mutes the new one."""
        auto, state, sent = make_automation(BUS_CFG)
        state.fader(3).value = 50
        auto.evaluate()

        bus_2 = SpeakerMuteConfig(enabled=True, trigger_channels=[3], mute_type="bus", bus_number=2, threshold=10)
        assert auto.configure(bus_2) is False
        assert auto.evaluate() is True
        assert sent.messages == [("/bus/1/mix/on", [0]), ("/bus/1/mix/on", [1]), ("/bus/2/mix/on", [0])]

    def test_same_target_keeps_mute(self):
        auto, state, sent = make_automation(BUS_CFG)
        state.fader(3).value = 50
        auto.evaluate()
        louder = SpeakerMuteConfig(enabled=True, trigger_channels=[3], mute_type="bus", bus_number=1, threshold=20)
        assert auto.configure(louder) is None
        assert state.speaker_muted
        assert len(sent.messages) == 1


class TestBridgeSpeakerMute:
    """Tests for speaker mute driven by mixer messages."""

    @pytest.mark.asyncio
    async def test_fader_messages_drive_speakers(self, make_bridge, events):
        b = await make_bridge(AppSettings(speaker_mute=BUS_CFG))
        b.transport.clear()

        for v in (0.0, 0.2, 0.25, 0.05):
            b.transport.reply("/ch/03/mix/fader", [v])
        await settle(b)

        assert b.transport.sent_to("/bus/1/mix/on") == [[0], [1]]
        assert [e["payload"]["muted"] for e in of_type(events, "speaker_mute_status")] == [True, False]

    @pytest.mark.asyncio
    async def test_follows_renamed_channel(self, make_bridge, events):
        """Test a name change moves the trigger to the new channel."""
        cfg = SpeakerMuteConfig(enabled=True, follow_channel_names=True, trigger_channel_names=["Host"],
                                mute_type="bus", bus_number=2, threshold=10)
        b = await make_bridge(AppSettings(speaker_mute=cfg))
        b.transport.reply("/ch/05/config/name", ["Host"])
        b.transport.reply("/ch/06/config/name", ["Guest"])
        await settle(b)

        b.transport.reply("/ch/06/mix/fader", [0.5])
        await settle(b)
        assert b.transport.sent_to("/bus/2/mix/on") == []

        b.transport.reply("/ch/05/config/name", ["Spare"])
        b.transport.reply("/ch/06/config/name", ["Host"])
        b.transport.reply("/ch/06/mix/fader", [0.6])
        await settle(b)
        assert b.transport.sent_to("/bus/2/mix/on") == [[0]]
        assert of_type(events, "channel-name")[-1]["payload"] == {"channel": 6, "name": "Host"}

    @pytest.mark.asyncio
    async def test_reload_disabling_unmutes(self, make_bridge, events, tmp_path):
        """Test turning speaker mute off while muted unmutes the bus and tells clients."""
        b = await make_bridge(AppSettings(speaker_mute=BUS_CFG))
        b.transport.reply("/ch/03/mix/fader", [0.5])
        await settle(b)
        assert b.state.speaker_muted

        path = tmp_path / "bridge-settings.json"
        path.write_text(json.dumps({"speakerMute": {"enabled": False}}), encoding="utf-8")
        b.settings_path = str(path)
        await b.reload_settings()

        assert b.transport.sent_to("/bus/1/mix/on") == [[0], [1]]
        assert [e["payload"]["muted"] for e in of_type(events, "speaker_mute_status")] == [True, False]
        snapshot = {e["type"]: e["payload"] for e in b.snapshot()}
        assert snapshot["speaker_mute_status"] == {"muted": False}

    @pytest.mark.asyncio
    async def test_reload_reevaluates_new_triggers(self, make_bridge, events, tmp_path):
        """Test a reload mutes at once when an open fader becomes a trigger."""
        b = await make_bridge(AppSettings(speaker_mute=BUS_CFG))
        b.transport.reply("/ch/04/mix/fader", [0.5])
        await settle(b)
        assert not b.state.speaker_muted

        path = tmp_path / "bridge-settings.json"
        path.write_text(json.dumps({"speakerMute": {"enabled": True, "triggerChannels": [4], "busNumber": 1}}),
                        encoding="utf-8")
        b.settings_path = str(path)
        await b.reload_settings()

        assert b.transport.sent_to("/bus/1/mix/on") == [[0]]
        assert of_type(events, "speaker_mute_status")[-1]["payload"] == {"muted": True}

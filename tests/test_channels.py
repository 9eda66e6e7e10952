"""
Tests for bulk channel property transfer (read, write, copy, swap).
"""

import asyncio

import pytest

from xair_bridge.channels import CATALOGUE, CHANNEL_PROPERTIES, BUS_SEND_PROPERTIES, TransferAborted, check_channel

from conftest import of_type, settle


def load_channel(mixer, channel, seed):
    """Give every catalogued property of `channel` a distinct value."""
    for i, prop in enumerate(CATALOGUE):
        addr = f"/ch/{channel:02d}/{prop}"
        if prop == "config/name":
            mixer.properties[addr] = f"CH{seed}"
        elif prop.endswith("/fader") or prop.endswith("/level"):
            mixer.properties[addr] = round(seed / 100 + i / 1000, 4)
        else:
            mixer.properties[addr] = seed * 1000 + i


class TestCatalogue:
    """Tests for the property catalogue."""

    def test_sizes(self):
        """Test the catalogue covers processing plus 6x5 bus sends."""
        assert len(CHANNEL_PROPERTIES) >= 60
        assert len(BUS_SEND_PROPERTIES) == 30
        assert len(set(CATALOGUE)) == len(CATALOGUE)

    def test_bus_send_paths(self):
        assert "mix/01/level" in BUS_SEND_PROPERTIES
        assert "mix/06/grpon" in BUS_SEND_PROPERTIES

    @pytest.mark.parametrize("ch", [0, 17, "x", None])
    def test_invalid_channels(self, ch):
        with pytest.raises(ValueError):
            check_channel(ch)


class TestReadWrite:
    """Tests for the read_all/write_all primitives."""

    @pytest.mark.asyncio
    async def test_read_all(self, bridge):
        """Test a full read returns every property in catalogue order."""
        load_channel(bridge.transport, 3, seed=3)
        props = await bridge.transfer.read_all(3)
        assert list(props) == list(CATALOGUE)
        assert props["config/name"] == "CH3"

    @pytest.mark.asyncio
    async def test_partial_read_resolves_on_timeout(self, bridge):
        """Test missing replies give a partial result, not an error."""
        load_channel(bridge.transport, 4, seed=4)
        bridge.transport.silent = {"/ch/04/gate/thr", "/ch/04/mix/03/pan"}
        props = await bridge.transfer.read_all(4)
        assert len(props) == len(CATALOGUE) - 2
        assert "gate/thr" not in props

    @pytest.mark.asyncio
    async def test_write_all_order_and_types(self, bridge):
        """Test writes follow catalogue order with typed args."""
        bridge.transport.clear()
        n = await bridge.transfer.write_all(9, {"mix/fader": 0.5, "config/name": "Host", "preamp/trim": 3})
        assert n == 3
        addrs = [a for a, _ in bridge.transport.writes("/ch/09/")]
        assert addrs == ["/ch/09/config/name", "/ch/09/preamp/trim", "/ch/09/mix/fader"]
        assert bridge.transport.properties["/ch/09/mix/fader"] == 0.5

    @pytest.mark.asyncio
    async def test_reset_aborts_reads(self, bridge, timing):
        """Test reset() ends a pending read early with TransferAborted."""
        bridge.transport.responsive = False
        task = asyncio.ensure_future(bridge.transfer.read_all(2))
        await asyncio.sleep(0.01)
        bridge.transfer.reset()
        with pytest.raises(TransferAborted):
            await asyncio.wait_for(task, timing.read_timeout / 2)

    @pytest.mark.asyncio
    async def test_reads_after_reset_still_work(self, bridge):
        bridge.transfer.reset()
        load_channel(bridge.transport, 3, seed=3)
        props = await bridge.transfer.read_all(3)
        assert len(props) == len(CATALOGUE)


class TestCopySwap:
    """Tests for copy and swap."""

    @pytest.mark.asyncio
    async def test_copy(self, bridge):
        """Test copy reproduces the source on the target."""
        load_channel(bridge.transport, 1, seed=1)
        written = await bridge.transfer.copy(1, 2)
        assert written == len(CATALOGUE)
        after = await bridge.transfer.read_all(2)
        before = await bridge.transfer.read_all(1)
        assert after == before

    @pytest.mark.asyncio
    async def test_swap(self, bridge):
        """Test swap exchanges both channels' catalogued properties."""
        mixer = bridge.transport
        load_channel(mixer, 5, seed=5)
        load_channel(mixer, 6, seed=6)
        orig_5 = await bridge.transfer.read_all(5)
        orig_6 = await bridge.transfer.read_all(6)

        written = await bridge.transfer.swap(5, 6)
        assert written == (len(CATALOGUE), len(CATALOGUE))

        assert await bridge.transfer.read_all(5) == orig_6
        assert await bridge.transfer.read_all(6) == orig_5

    @pytest.mark.asyncio
    async def test_swap_reads_before_writes(self, bridge):
        """Test no write goes out before both reads are done."""
        load_channel(bridge.transport, 7, seed=7)
        load_channel(bridge.transport, 8, seed=8)
        bridge.transport.clear()
        await bridge.transfer.swap(7, 8)
        kinds = ["w" if v else "r" for a, v in bridge.transport.sent if a.startswith("/ch/0")]
        first_write = kinds.index("w")
        assert "r" not in kinds[first_write:]

    @pytest.mark.asyncio
    async def test_same_channel_rejected(self, bridge):
        with pytest.raises(ValueError):
            await bridge.transfer.copy(4, 4)
        with pytest.raises(ValueError):
            await bridge.transfer.swap(4, 4)

    @pytest.mark.asyncio
    async def test_operation_events(self, bridge, events):
        """Test a copy started through the bridge reports completion."""
        load_channel(bridge.transport, 10, seed=10)
        bridge.start_channel_operation("copy", 10, 11, "r1")
        await asyncio.sleep(0.1)
        await settle(bridge)
        done = of_type(events, "channel_operation_complete")
        assert done[-1]["payload"] == {"operation": "copy", "source": 10, "target": 11,
                                       "properties": len(CATALOGUE)}
        assert done[-1]["reqId"] == "r1"

    @pytest.mark.asyncio
    async def test_address_switch_aborts_copy(self, bridge, events):
        """Test a copy in flight never writes old values to a new mixer."""
        load_channel(bridge.transport, 1, seed=1)
        bridge.transport.silent = {"/ch/01/gate/thr"}
        bridge.start_channel_operation("copy", 1, 2, "r7")
        await asyncio.sleep(0.01)
        await settle(bridge)

        await bridge.set_mixer_address("10.0.0.99")
        new_mixer = bridge.transport
        await asyncio.sleep(0.05)
        await settle(bridge)

        assert new_mixer.writes("/ch/02/") == []
        assert of_type(events, "channel_operation_complete") == []
        err = of_type(events, "channel_operation_error")[-1]
        assert err["reqId"] == "r7"
        assert err["payload"]["operation"] == "copy"
        assert err["payload"]["target"] == 2

    @pytest.mark.asyncio
    async def test_swap_reset_between_read_and_write(self, bridge):
        """Test a reset after both reads finish still stops the writes."""
        load_channel(bridge.transport, 5, seed=5)
        load_channel(bridge.transport, 6, seed=6)
        bridge.transfer.timing.write_delay = 0.01
        task = asyncio.ensure_future(bridge.transfer.swap(5, 6))
        while not bridge.transport.writes("/ch/0"):
            await asyncio.sleep(0.001)
        bridge.transfer.reset()
        with pytest.raises(TransferAborted):
            await task
        assert len(bridge.transport.writes("/ch/0")) < 2 * len(CATALOGUE)

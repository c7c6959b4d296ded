"""
Unit tests for ConnectionManager.

Tests the bounded connect retry loop, characteristic resolution with
fallback, and idempotent error-swallowing disconnect.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from mock_radio_driver import target_services
from waypoint_link.config import LinkConfig
from waypoint_link.connection_manager import ConnectionHandle, ConnectionManager
from waypoint_link.errors import ConnectionFailed, NoWritableCharacteristic
from waypoint_link.radio_driver import CharacteristicRef, RadioStackHandle, ServiceInfo


OTHER_SERVICE = "0000180a-0000-1000-8000-00805f9b34fb"


@pytest.fixture
def stack(radio_env):
    return RadioStackHandle(radio_env.factory, destroy_settle=0, create_settle=0)


@pytest.fixture
def manager(stack, fast_config):
    return ConnectionManager(stack, fast_config)


class TestConnect:

    @pytest.mark.asyncio
    async def test_connects_and_discovers(self, manager, receiver):
        handle = await manager.connect(receiver.descriptor())

        assert isinstance(handle, ConnectionHandle)
        assert handle.device.id == receiver.id
        assert handle.services == target_services()
        assert not handle.released

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, manager, receiver, radio_env):
        receiver.connect_failures = 2

        handle = await manager.connect(receiver.descriptor())

        assert handle.device.id == receiver.id
        assert radio_env.connect_calls == 3

    @pytest.mark.asyncio
    async def test_four_attempts_then_connection_failed(self, manager, receiver, radio_env):
        receiver.reachable = False

        with pytest.raises(ConnectionFailed) as exc_info:
            await manager.connect(receiver.descriptor())

        assert radio_env.connect_calls == LinkConfig.MAX_RETRIES + 1
        assert exc_info.value.attempts == 4
        assert exc_info.value.stage == "connect"
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_waits_retry_delay_between_attempts(self, radio_env, receiver):
        config = LinkConfig({"retry_delay": 2.0, "max_retries": 2})
        manager = ConnectionManager(RadioStackHandle(radio_env.factory), config)
        receiver.reachable = False

        with patch("waypoint_link.connection_manager.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ConnectionFailed):
                await manager.connect(receiver.descriptor())

        # No delay after the final attempt
        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.0)

    @pytest.mark.asyncio
    async def test_discovery_failure_drops_link_and_retries(self, manager, receiver, radio_env):
        radio_env.driver.services = AsyncMock(side_effect=[RuntimeError("GATT error"), target_services()])

        handle = await manager.connect(receiver.descriptor())

        assert handle.services == target_services()
        assert radio_env.disconnects == [receiver.id]
        assert radio_env.connect_calls == 2

    @pytest.mark.asyncio
    async def test_zero_retries(self, stack, receiver, radio_env):
        manager = ConnectionManager(stack, LinkConfig({"max_retries": 0, "retry_delay": 0}))
        receiver.connect_failures = 1

        with pytest.raises(ConnectionFailed) as exc_info:
            await manager.connect(receiver.descriptor())

        assert exc_info.value.attempts == 1


class TestFindWritableCharacteristic:

    def make_handle(self, receiver, services):
        return ConnectionHandle(receiver.descriptor(), raw=None, services=services)

    def test_prefers_target_characteristic(self, manager, receiver):
        other = CharacteristicRef(OTHER_SERVICE, "00002a29-0000-1000-8000-00805f9b34fb", writable_with_response=True)
        services = [ServiceInfo(OTHER_SERVICE, (other,))] + target_services()

        char = manager.find_writable_characteristic(self.make_handle(receiver, services))

        assert char.id == LinkConfig.CHARACTERISTIC_UUID

    def test_target_match_is_case_insensitive(self, manager, receiver):
        services = target_services(characteristic_id=LinkConfig.CHARACTERISTIC_UUID.upper())

        char = manager.find_writable_characteristic(self.make_handle(receiver, services))

        assert char.id == LinkConfig.CHARACTERISTIC_UUID.upper()

    def test_falls_back_to_first_writable(self, manager, receiver):
        read_only = CharacteristicRef(OTHER_SERVICE, "read-only")
        first = CharacteristicRef(OTHER_SERVICE, "first", writable_without_response=True)
        second = CharacteristicRef(OTHER_SERVICE, "second", writable_with_response=True)
        services = [ServiceInfo(OTHER_SERVICE, (read_only, first, second))]

        char = manager.find_writable_characteristic(self.make_handle(receiver, services))

        assert char is first

    def test_nothing_writable(self, manager, receiver):
        services = [ServiceInfo(OTHER_SERVICE, (CharacteristicRef(OTHER_SERVICE, "read-only"),))]

        with pytest.raises(NoWritableCharacteristic) as exc_info:
            manager.find_writable_characteristic(self.make_handle(receiver, services))

        assert exc_info.value.stage == "discover"


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, manager, receiver, radio_env):
        handle = await manager.connect(receiver.descriptor())

        await manager.disconnect(handle)
        await manager.disconnect(handle)

        assert handle.released
        assert radio_env.disconnects == [receiver.id]
        assert radio_env.live_connections == []

    @pytest.mark.asyncio
    async def test_disconnect_errors_are_swallowed(self, manager, receiver, radio_env):
        handle = await manager.connect(receiver.descriptor())
        radio_env.fail_disconnect = True

        await manager.disconnect(handle)

        assert handle.released

    @pytest.mark.asyncio
    async def test_disconnect_logs_connection_age(self, manager, receiver, silence_rns_log):
        handle = await manager.connect(receiver.descriptor())
        handle.connected_at -= 2.5

        await manager.disconnect(handle)

        messages = [c.args[0] for c in silence_rns_log.call_args_list]
        disconnect_lines = [m for m in messages if f"Disconnecting from {receiver.id}" in m]
        assert len(disconnect_lines) == 1
        assert " after 2.5s..." in disconnect_lines[0] or " after 2.6s..." in disconnect_lines[0]

    @pytest.mark.asyncio
    async def test_disconnect_none(self, manager):
        await manager.disconnect(None)

    @pytest.mark.asyncio
    async def test_settle_after_disconnect(self, stack, receiver):
        manager = ConnectionManager(stack, LinkConfig({"disconnect_settle": 0.2}))
        handle = await manager.connect(receiver.descriptor())

        with patch("waypoint_link.connection_manager.asyncio.sleep", new=AsyncMock()) as sleep:
            await manager.disconnect(handle)

        sleep.assert_awaited_once_with(0.2)

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Set, Tuple

import pytest

from ais140_emulator.config import Settings
from ais140_emulator.errors import ConnectError
from ais140_emulator.models import DeviceConfig, ServerTarget
from ais140_emulator.transport import (
    EventCallback, SendResult, Transport, TransportEvent, TransportHandle
)

SCENARIO_IMEI = "866772041471415"


class FakeTransport(Transport):
    """In-memory transport recording every packet it is asked to send."""

    name = "fake"

    def __init__(self, fail_connect: Set[str] | None = None, send_ok: bool = True,
                 response: str = "ACK"):
        self.fail_connect = fail_connect or set()
        self.send_ok = send_ok
        self.response = response
        self.sent: List[Tuple[str, str]] = []
        self.handles: Dict[str, List[TransportHandle]] = {}
        self.disconnected: List[TransportHandle] = []
        self.closed = False

    async def connect(self, target: ServerTarget, on_event: EventCallback) -> TransportHandle:
        await asyncio.sleep(0)
        if target.id in self.fail_connect:
            raise ConnectError(f"Failed to connect to {target.address}: refused")
        handle = TransportHandle(target, on_event)
        self.handles.setdefault(target.id, []).append(handle)
        return handle

    async def send(self, handle: TransportHandle, packet: str) -> SendResult:
        await asyncio.sleep(0)
        self.sent.append((handle.target.id, packet))
        if self.send_ok:
            return SendResult(True, self.response)
        return SendResult(False, "remote rejected packet")

    async def disconnect(self, handle: TransportHandle) -> None:
        if not handle.closed:
            handle.closed = True
            self.disconnected.append(handle)

    async def aclose(self) -> None:
        self.closed = True

    def emit(self, target_id: str, event: TransportEvent) -> None:
        handle = self.handles[target_id][-1]
        handle.emit(event)

    def packets_for(self, target_id: str) -> List[str]:
        return [packet for tid, packet in self.sent if tid == target_id]


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    """Poll the predicate on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def make_settings(**overrides) -> Settings:
    values = {
        "send_interval": 0.05,
        "max_session_lifetime": 0,
        "connect_timeout": 2.0,
        "status_poll_interval": 0.05,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def device_config() -> DeviceConfig:
    return DeviceConfig(
        device_imei=SCENARIO_IMEI,
        vendor_id="VNDR",
        vehicle_number="PB01BV2345",
        network_provider="Airtel",
    )


@pytest.fixture()
def target() -> ServerTarget:
    return ServerTarget(id="server_1", host="34.225.227.181", port="5001")


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()

"""Transports that carry packets to servers: raw TCP stream or HTTP relay."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import httpx
import structlog

from .config import Settings
from .errors import ConnectError
from .models import ServerTarget

logger = structlog.get_logger(__name__)


class TransportEventKind(str, Enum):
    """Events an open handle reports to its owner."""

    DATA = "data"
    CLOSED = "closed"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class TransportEvent:
    kind: TransportEventKind
    text: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.kind != TransportEventKind.DATA


@dataclass(frozen=True)
class SendResult:
    """Outcome of one send; ``response`` holds the reply or the error text."""

    ok: bool
    response: str = ""


EventCallback = Callable[[TransportEvent], None]


class TransportHandle:
    """An open channel to one target."""

    def __init__(self, target: ServerTarget, on_event: EventCallback):
        self.target = target
        self.on_event = on_event
        self.closed = False

    def emit(self, event: TransportEvent) -> None:
        try:
            self.on_event(event)
        except Exception as e:
            logger.error("Error in transport event handler",
                         target=self.target.address,
                         event=event.kind.value,
                         error=str(e))


class Transport(ABC):
    """Common interface of the TCP and HTTP relay variants."""

    name = "transport"

    @abstractmethod
    async def connect(self, target: ServerTarget, on_event: EventCallback) -> TransportHandle:
        """
        Open a channel to a target.

        Raises:
            ConnectError: If the channel cannot be established
        """

    @abstractmethod
    async def send(self, handle: TransportHandle, packet: str) -> SendResult:
        """Send one packet; network failures are returned, not raised."""

    @abstractmethod
    async def disconnect(self, handle: TransportHandle) -> None:
        """Release a handle. Safe to call more than once."""

    def is_open(self, handle: TransportHandle) -> bool:
        return not handle.closed

    async def aclose(self) -> None:
        """Release resources shared across handles."""


class TCPHandle(TransportHandle):
    """Stream connection plus the task reading from it."""

    def __init__(self, target: ServerTarget, on_event: EventCallback,
                 reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        super().__init__(target, on_event)
        self.reader = reader
        self.writer = writer
        self.reader_task: Optional[asyncio.Task] = None
        self.last_activity = asyncio.get_running_loop().time()

    def touch(self) -> None:
        self.last_activity = asyncio.get_running_loop().time()


class TCPTransport(Transport):
    """Persistent raw text stream, one packet per write."""

    name = "tcp"

    def __init__(self, connect_timeout: float = 15.0, idle_timeout: float = 0.0,
                 read_size: int = 4096):
        """
        Initialize the TCP transport.

        Args:
            connect_timeout: Seconds allowed for the connection to open
            idle_timeout: Seconds without traffic before a TIMEOUT event, 0 disables
            read_size: Maximum bytes per read
        """
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self.read_size = read_size

    async def connect(self, target: ServerTarget, on_event: EventCallback) -> TCPHandle:
        logger.info("Connecting", target=target.address)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(target.host, target.port),
                timeout=self.connect_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectError(
                f"Connection timeout after {self.connect_timeout}s: {target.address}"
            ) from None
        except OSError as e:
            raise ConnectError(f"Failed to connect to {target.address}: {e}") from e

        handle = TCPHandle(target, on_event, reader, writer)
        handle.reader_task = asyncio.create_task(self._read_loop(handle))

        logger.info("Connected", target=target.address)
        return handle

    async def send(self, handle: TransportHandle, packet: str) -> SendResult:
        if not self.is_open(handle):
            return SendResult(False, "Connection is not open")

        data = packet.encode("utf-8")
        try:
            handle.writer.write(data)
            await handle.writer.drain()
        except OSError as e:
            return SendResult(False, f"Send failed: {e}")

        handle.touch()
        return SendResult(True, f"Sent {len(data)} bytes")

    async def disconnect(self, handle: TransportHandle) -> None:
        handle.closed = True

        task = handle.reader_task
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            handle.writer.close()
            await handle.writer.wait_closed()
        except OSError as e:
            logger.debug("Error closing connection",
                         target=handle.target.address,
                         error=str(e))

    def is_open(self, handle: TransportHandle) -> bool:
        return not handle.closed and not handle.writer.is_closing()

    def _read_timeout(self, handle: TCPHandle) -> Optional[float]:
        if self.idle_timeout <= 0:
            return None
        elapsed = asyncio.get_running_loop().time() - handle.last_activity
        return max(self.idle_timeout - elapsed, 0.01)

    async def _read_loop(self, handle: TCPHandle) -> None:
        """Surface inbound bytes until the stream ends."""
        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    data = await asyncio.wait_for(
                        handle.reader.read(self.read_size),
                        timeout=self._read_timeout(handle)
                    )
                except asyncio.TimeoutError:
                    if loop.time() - handle.last_activity >= self.idle_timeout:
                        self._terminate(handle, TransportEvent(
                            TransportEventKind.TIMEOUT,
                            f"Connection idle for {self.idle_timeout}s"
                        ))
                        return
                    continue

                if not data:
                    self._terminate(handle, TransportEvent(
                        TransportEventKind.CLOSED, "Connection closed by server"
                    ))
                    return

                handle.touch()
                text = data.decode("utf-8", errors="replace")
                logger.debug("Received data",
                             target=handle.target.address,
                             data=text,
                             raw=data.hex(" "))
                handle.emit(TransportEvent(TransportEventKind.DATA, text))

        except OSError as e:
            self._terminate(handle, TransportEvent(TransportEventKind.ERROR, str(e)))

    def _terminate(self, handle: TCPHandle, event: TransportEvent) -> None:
        if handle.closed:
            return

        handle.closed = True
        handle.writer.close()
        handle.emit(event)


class HTTPRelayTransport(Transport):
    """Stateless variant posting each packet to a relay endpoint."""

    name = "http"

    def __init__(self, relay_url: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the relay transport.

        Args:
            relay_url: Endpoint accepting the JSON packet envelope
            timeout: Seconds allowed for one round trip
            client: Shared HTTP client; one is created on demand if omitted
        """
        self.relay_url = relay_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def connect(self, target: ServerTarget, on_event: EventCallback) -> TransportHandle:
        return TransportHandle(target, on_event)

    async def send(self, handle: TransportHandle, packet: str) -> SendResult:
        if handle.closed:
            return SendResult(False, "Session is not open")

        envelope = {
            "packet": packet,
            "HOST": handle.target.host,
            "PORT": str(handle.target.port),
        }

        try:
            resp = await self._get_client().post(
                self.relay_url, json=envelope, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            return SendResult(False, f"Relay request failed: {str(e) or type(e).__name__}")

        if resp.is_success:
            return SendResult(True, resp.text)
        return SendResult(False, f"HTTP {resp.status_code}: {resp.text}")

    async def disconnect(self, handle: TransportHandle) -> None:
        handle.closed = True

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def create_transport(settings: Settings) -> Transport:
    """Select the transport variant named in the settings."""
    if settings.is_http_transport:
        return HTTPRelayTransport(settings.relay_url, timeout=settings.http_timeout)
    return TCPTransport(
        connect_timeout=settings.connect_timeout,
        idle_timeout=settings.idle_timeout
    )

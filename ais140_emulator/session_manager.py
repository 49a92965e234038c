"""Per-server transmission sessions: connect, login, periodic reports, teardown."""

import asyncio
from typing import Callable, Dict, List, Optional, Sequence, Set

import structlog

from .config import Settings
from .errors import ConfigValidationError, ConnectError, SendError, TerminalTransportError
from .logging_config import (
    ErrorHandler, error_handler as default_error_handler,
    PACKETS_SENT, RESPONSES_RECEIVED, SESSIONS_CLOSED, SEND_TIME,
    ACTIVE_SESSIONS
)
from .models import (
    Coordinates, DeviceConfig, PacketKind, RecordStatus, ServerTarget,
    SessionState, SessionStatus, validate_targets
)
from .packet_encoder import build_login_packet, build_position_report_packet
from .transmission_log import TransmissionLog
from .transport import SendResult, Transport, TransportEvent, TransportHandle

logger = structlog.get_logger(__name__)

DataListener = Callable[[ServerTarget, str], None]


class Session:
    """Runtime state binding one target to a transport handle and a schedule."""

    def __init__(self, target: ServerTarget):
        self.target = target
        self.state = SessionState.IDLE
        self.handle: Optional[TransportHandle] = None
        self.task: Optional[asyncio.Task] = None
        self.started_at: Optional[float] = None
        self.sends = 0
        self.errors = 0
        self.last_response: Optional[str] = None
        self.close_reason: Optional[str] = None

    def get_stats(self) -> dict:
        return {
            "target": self.target.address,
            "state": self.state.value,
            "sends": self.sends,
            "errors": self.errors,
            "close_reason": self.close_reason,
        }


class SessionManager:
    """Owns every live session, keyed by target id.

    At most one session exists per target id. Each session runs as one
    asyncio task; stopping a session cancels and awaits that task, so no
    send for the target can start after the stop returns.
    """

    def __init__(self, settings: Settings, transport: Transport,
                 log: Optional[TransmissionLog] = None,
                 on_data: Optional[DataListener] = None,
                 error_handler: Optional[ErrorHandler] = None):
        """
        Initialize the session manager.

        Args:
            settings: Application settings (send interval, session lifetime)
            transport: Transport variant used for every session
            log: Shared record log, a new one is created if omitted
            on_data: Called with inbound text from stream transports
            error_handler: Error reporter, defaults to the global one
        """
        self.settings = settings
        self.transport = transport
        self.log = log if log is not None else TransmissionLog()
        self.on_data = on_data
        self.error_handler = error_handler or default_error_handler

        self._sessions: Dict[str, Session] = {}
        self._config: Optional[DeviceConfig] = None
        self._coordinates: Optional[Coordinates] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def config(self) -> Optional[DeviceConfig]:
        return self._config

    def _validate(self, config: DeviceConfig) -> None:
        try:
            config.validate_for_transmission()
        except ConfigValidationError as e:
            self.error_handler.handle_validation_error(e.field, e)
            raise

    def update_config(self, config: DeviceConfig) -> None:
        """
        Replace the configuration used by the next packets of every session.

        Raises:
            ConfigValidationError: If the configuration cannot be transmitted
        """
        self._validate(config)
        self._config = config

    def update_position(self, coordinates: Optional[Coordinates]) -> None:
        """Set the latest device GPS fix used by device GPS mode."""
        self._coordinates = coordinates

    async def start_all(self, targets: Sequence[ServerTarget], config: DeviceConfig) -> None:
        """
        Start one session per target.

        Configuration and targets are validated before any session starts.

        Raises:
            ConfigValidationError: If the configuration or target list is invalid
        """
        self._validate(config)
        try:
            targets = validate_targets(targets)
        except ConfigValidationError as e:
            self.error_handler.handle_validation_error(e.field, e)
            raise

        for target in targets:
            await self.start_session(target, config)

    async def start_session(self, target: ServerTarget,
                            config: Optional[DeviceConfig] = None) -> None:
        """
        Start transmitting to one target, replacing any existing session for it.

        Args:
            target: Destination server
            config: Device configuration; the current one is reused if omitted

        Raises:
            ConfigValidationError: If there is no valid configuration
        """
        config = config or self._config
        if config is None:
            raise ConfigValidationError("device", "Device configuration is required")
        self._validate(config)
        self._config = config

        while target.id in self._sessions:
            await self.stop_session(target.id)

        session = Session(target)
        session.state = SessionState.CONNECTING
        self._sessions[target.id] = session
        session.task = asyncio.create_task(self._run_session(session))

        logger.info("Session starting",
                    target_id=target.id,
                    target=target.address,
                    transport=self.transport.name)

    async def stop_session(self, target_id: str) -> None:
        """Stop one session. Unknown or already closed ids are ignored."""
        session = self._sessions.pop(target_id, None)
        if session is None:
            return

        await self._teardown(session, "stopped")
        logger.info("Session stopped", target_id=target_id, **session.get_stats())

    async def stop_all_sessions(self) -> None:
        """Stop every session."""
        sessions = list(self._sessions.values())
        self._sessions.clear()

        if sessions:
            logger.info("Stopping all sessions", count=len(sessions))
        await asyncio.gather(*(self._teardown(s, "stopped") for s in sessions))

    async def close(self) -> None:
        """Stop all sessions and release the transport."""
        await self.stop_all_sessions()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.transport.aclose()

    def get_status(self) -> List[SessionStatus]:
        """Snapshot of every known session in start order."""
        status = []
        for target_id, session in self._sessions.items():
            connected = (
                session.state in (SessionState.CONNECTING, SessionState.ACTIVE)
                and session.handle is not None
                and self.transport.is_open(session.handle)
            )
            status.append(SessionStatus(
                target_id=target_id,
                connected=connected,
                state=session.state
            ))

        ACTIVE_SESSIONS.set(sum(1 for s in status if s.connected))
        return status

    def get_session(self, target_id: str) -> Optional[Session]:
        return self._sessions.get(target_id)

    async def send_custom_packet(self, target_id: str, packet: str) -> bool:
        """
        Send an arbitrary packet over an active session.

        Returns:
            True if the packet was sent
        """
        session = self._sessions.get(target_id)
        if session is None or session.state != SessionState.ACTIVE:
            logger.warning("Cannot send packet - no active session",
                           target_id=target_id)
            return False

        result = await self._send(session, PacketKind.CUSTOM, packet)
        return result.ok

    async def _run_session(self, session: Session) -> None:
        """Connect, log in, then send position reports until closed."""
        target = session.target
        loop = asyncio.get_running_loop()
        session.started_at = loop.time()
        interval = self.settings.send_interval
        lifetime = self.settings.max_session_lifetime
        deadline = session.started_at + lifetime if lifetime > 0 else None

        try:
            try:
                session.handle = await self.transport.connect(
                    target, lambda event: self._on_transport_event(session, event)
                )
            except ConnectError as e:
                self.error_handler.handle_connect_error(target.address, e)
                self._record(session, PacketKind.LOGIN,
                             build_login_packet(self._config, self._coordinates),
                             SendResult(False, str(e)))
                self._close(session, "connect_error")
                return

            await self._send(session, PacketKind.LOGIN,
                             build_login_packet(self._config, self._coordinates))
            if session.state == SessionState.CLOSED:
                return

            session.state = SessionState.ACTIVE
            logger.info("Session active", target_id=target.id, target=target.address)

            next_at = loop.time() + interval
            while True:
                if deadline is not None and next_at > deadline:
                    await asyncio.sleep(max(deadline - loop.time(), 0))
                    logger.info("Session lifetime reached",
                                target_id=target.id, lifetime=lifetime)
                    self._close(session, "expired")
                    await self._release(session)
                    return

                await asyncio.sleep(max(next_at - loop.time(), 0))

                packet = build_position_report_packet(self._config, self._coordinates)
                await self._send(session, PacketKind.POSITION_REPORT, packet)

                next_at += interval
                while next_at <= loop.time():
                    next_at += interval

        except Exception as e:
            logger.error("Session failed",
                         target_id=target.id,
                         error=str(e),
                         exc_info=True)
            self._close(session, "failed")
            await self._release(session)

    async def _send(self, session: Session, kind: PacketKind, packet: str) -> SendResult:
        """Send one packet and record the attempt exactly once."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            result = await self.transport.send(session.handle, packet)
        except asyncio.CancelledError:
            self._record(session, kind, packet,
                         SendResult(False, "Send cancelled: session closed"))
            raise
        except Exception as e:
            result = SendResult(False, f"Send failed: {e}")

        SEND_TIME.observe(loop.time() - start_time)
        self._record(session, kind, packet, result)
        return result

    def _record(self, session: Session, kind: PacketKind, packet: str,
                result: SendResult) -> None:
        session.sends += 1

        if result.ok:
            PACKETS_SENT.labels(kind=kind.value).inc()
            logger.info("Packet sent",
                        target_id=session.target.id,
                        kind=kind.value,
                        packet=packet)
        else:
            session.errors += 1
            self.error_handler.handle_send_error(
                session.target.address, kind.value, SendError(result.response)
            )

        self.log.append(
            session.target, kind, packet, result.response,
            RecordStatus.SUCCESS if result.ok else RecordStatus.ERROR
        )

    def _on_transport_event(self, session: Session, event: TransportEvent) -> None:
        if not event.is_terminal:
            session.last_response = event.text
            RESPONSES_RECEIVED.inc()
            logger.info("Response received",
                        target_id=session.target.id,
                        response=event.text)
            if self.on_data:
                self.on_data(session.target, event.text)
            return

        if session.state == SessionState.CLOSED:
            return

        self.error_handler.handle_terminal_event(
            session.target.address, event.kind.value, TerminalTransportError(event.text)
        )
        self._close(session, event.kind.value)

        task = asyncio.create_task(self._release(session))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _close(self, session: Session, reason: str) -> None:
        """Mark a session closed and cancel its schedule."""
        if session.state == SessionState.CLOSED:
            return

        session.state = SessionState.CLOSED
        session.close_reason = reason
        SESSIONS_CLOSED.labels(reason=reason).inc()

        task = session.task
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _release(self, session: Session) -> None:
        handle = session.handle
        if handle is None:
            return

        try:
            await self.transport.disconnect(handle)
        except Exception as e:
            logger.error("Error releasing transport handle",
                         target_id=session.target.id,
                         error=str(e))

    async def _teardown(self, session: Session, reason: str) -> None:
        self._close(session, reason)

        task = session.task
        if task and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._release(session)

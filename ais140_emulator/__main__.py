"""Main entry point for the AIS-140 tracker emulator."""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

import structlog
from prometheus_client import start_http_server

from .config import Settings
from .errors import ConfigValidationError
from .logging_config import setup_logging, error_handler
from .models import ServerTarget, SessionState, TransmissionRecord
from .packet_encoder import build_login_packet, build_position_report_packet
from .session_manager import SessionManager
from .transmission_log import TransmissionLog
from .transport import create_transport

logger = structlog.get_logger(__name__)


class TrackerEmulator:
    """Main application class: runs one session per configured server."""

    def __init__(self, settings: Settings, export_path: Optional[str] = None):
        """
        Initialize the emulator.

        Args:
            settings: Application settings
            export_path: Write the transmission log here on shutdown
        """
        self.settings = settings
        self.export_path = export_path
        self.log = TransmissionLog()
        self.manager = SessionManager(
            settings,
            create_transport(settings),
            self.log,
            on_data=self.handle_response
        )
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._monitor_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """
        Validate the configuration and start transmitting.

        Raises:
            ConfigValidationError: If the device or server configuration is invalid
        """
        logger.info("Starting tracker emulator",
                    config=self.settings.get_summary())

        config = self.settings.device_config()
        targets = self.settings.server_targets()

        self.log.subscribe(self.handle_record)
        await self.manager.start_all(targets, config)

        self._running = True
        self._monitor_task = asyncio.create_task(self._monitor_status())

        logger.info("Transmission started", servers=len(targets))

    async def stop(self) -> None:
        """Stop all sessions gracefully."""
        logger.info("Stopping tracker emulator...")

        self._running = False
        self._shutdown_event.set()

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        await self.manager.close()

        logger.info("Transmission stopped",
                    records=self.log.get_stats(),
                    errors=error_handler.get_error_stats())

        if self.export_path:
            await self.log.export(self.export_path)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def handle_record(self, record: TransmissionRecord) -> None:
        """Print each exchange as it is recorded."""
        print(f"[{record.timestamp:%H:%M:%S}] {record.host}:{record.port} "
              f"{record.kind.value} {record.status.value.upper()}: {record.response}")

    def handle_response(self, target: ServerTarget, text: str) -> None:
        print(f"[{target.address}] <- {text.strip()}")

    async def _monitor_status(self) -> None:
        """Poll session status; shut down once every session has closed."""
        while self._running:
            try:
                await asyncio.sleep(self.settings.status_poll_interval)

                status = self.manager.get_status()
                logger.info("Connection status",
                            sessions={s.target_id: s.state.value for s in status},
                            connected=sum(1 for s in status if s.connected),
                            records=self.log.get_stats())

                if status and all(s.state == SessionState.CLOSED for s in status):
                    logger.warning("All sessions closed - shutting down")
                    self.request_shutdown()
                    return

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in status monitor", error=str(e))

    async def run(self) -> None:
        """Run until shutdown is requested or every session has closed."""
        await self.start()
        await self._shutdown_event.wait()
        await self.stop()


def setup_signal_handlers(app: TrackerEmulator) -> None:
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info("Received shutdown signal", signal=sig.name)
        app.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler, sig)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(app.request_shutdown))


def preview_packets(settings: Settings) -> List[str]:
    """
    Build the packets the configured device would send first.

    Raises:
        ConfigValidationError: If the device configuration is invalid
    """
    config = settings.device_config()
    config.validate_for_transmission()
    return [build_login_packet(config), build_position_report_packet(config)]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='ais140-emulator',
        description='Emulate an AIS-140 vehicle tracker sending LGN/PVT packets'
    )

    parser.add_argument(
        '-s', '--servers',
        help='Comma separated host:port list (overrides SERVERS)'
    )

    parser.add_argument(
        '-t', '--transport',
        choices=['tcp', 'http'],
        help='Transport to use (overrides TRANSPORT)'
    )

    parser.add_argument(
        '--preview',
        action='store_true',
        help='Print the login and position packets and exit'
    )

    parser.add_argument(
        '--export',
        metavar='PATH',
        help='Write the transmission log to PATH on shutdown'
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    overrides = {}
    if args.servers:
        overrides["servers"] = args.servers
    if args.transport:
        overrides["transport"] = args.transport

    settings = Settings(**overrides)
    setup_logging(settings)

    if args.preview:
        try:
            packets = preview_packets(settings)
        except ConfigValidationError as e:
            print(f"Validation Error: {e.message}", file=sys.stderr)
            return 2

        print("=" * 60)
        print("LOGIN PACKET:")
        print(packets[0])
        print("=" * 60)
        print("PVT PACKET:")
        print(packets[1])
        print("=" * 60)
        return 0

    if settings.metrics_enabled:
        start_http_server(settings.metrics_port)
        logger.info("Prometheus metrics server started",
                    port=settings.metrics_port)

    app = TrackerEmulator(settings, export_path=args.export)
    setup_signal_handlers(app)

    try:
        await app.run()
    except ConfigValidationError as e:
        print(f"Validation Error: {e.message}", file=sys.stderr)
        await app.manager.close()
        return 2
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        return 1

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(run(parse_args(argv))))


if __name__ == "__main__":
    main()

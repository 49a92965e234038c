"""Append-only log of packet exchanges shared by all sessions."""

from datetime import datetime
from typing import Callable, Dict, List, Optional

import aiofiles
import structlog

from .models import PacketKind, RecordStatus, ServerTarget, TransmissionRecord

logger = structlog.get_logger(__name__)

RecordListener = Callable[[TransmissionRecord], None]

EXPORT_TITLE = "Transmission Log"


class TransmissionLog:
    """Insertion-ordered record log with observers.

    All mutation happens synchronously on the event loop thread, so an
    append and a clear can never interleave. Sequence numbers keep rising
    across clears.
    """

    def __init__(self):
        self._records: List[TransmissionRecord] = []
        self._listeners: List[RecordListener] = []
        self._next_id = 1

    def append(self, target: ServerTarget, kind: PacketKind, packet: str,
               response: str, status: RecordStatus,
               timestamp: Optional[datetime] = None) -> TransmissionRecord:
        """
        Record one send attempt and notify listeners.

        Args:
            target: Server the packet was sent to
            kind: Packet kind
            packet: Outgoing packet text
            response: Response text or error message
            status: Outcome of the attempt
            timestamp: Wall clock time, defaults to now

        Returns:
            The stored record
        """
        record = TransmissionRecord(
            id=self._next_id,
            timestamp=timestamp or datetime.now(),
            target_id=target.id,
            host=target.host,
            port=target.port,
            kind=kind,
            packet=packet,
            response=response,
            status=status,
        )
        self._next_id += 1
        self._records.append(record)

        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.error("Error in record listener",
                             record_id=record.id,
                             error=str(e))

        return record

    def subscribe(self, listener: RecordListener) -> Callable[[], None]:
        """
        Register a listener called after every append.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self) -> None:
        """Drop every record."""
        dropped = len(self._records)
        self._records = []
        logger.info("Transmission log cleared", dropped=dropped)

    def records(self) -> List[TransmissionRecord]:
        """Snapshot of all records in insertion order."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def get_stats(self) -> Dict[str, int]:
        """Count records by outcome."""
        success = sum(1 for r in self._records if r.status == RecordStatus.SUCCESS)
        return {
            "total": len(self._records),
            "success": success,
            "error": len(self._records) - success,
        }

    def to_text(self) -> str:
        """Render the log in the shareable plain text format."""
        content = "".join(format_record(record) for record in self._records)
        return f"{EXPORT_TITLE}\n\n{content}"

    async def export(self, path: str) -> int:
        """
        Write the plain text rendering to a file.

        Args:
            path: Destination file path

        Returns:
            Number of records written
        """
        count = len(self._records)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(self.to_text())

        logger.info("Transmission log exported", path=path, records=count)
        return count


def format_record(record: TransmissionRecord) -> str:
    """Render one record as a share entry."""
    timestamp = record.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    return (
        f"[{timestamp}] {record.host}:{record.port} - {record.status.value.upper()}\n"
        f"Packet: {record.packet}\n"
        f"Response: {record.response}\n\n"
    )

from __future__ import annotations

import pathlib
from datetime import datetime

import pytest

from ais140_emulator.models import PacketKind, RecordStatus, ServerTarget, TransmissionRecord
from ais140_emulator.transmission_log import TransmissionLog, format_record


def _append(log: TransmissionLog, target: ServerTarget, status=RecordStatus.SUCCESS) -> TransmissionRecord:
    return log.append(target, PacketKind.POSITION_REPORT, "$PVT,X*00", "ACK", status,
                      timestamp=datetime(2026, 10, 19, 9, 5, 7))


def test_append_assigns_increasing_ids(target: ServerTarget) -> None:
    log = TransmissionLog()
    ids = [_append(log, target).id for _ in range(3)]

    assert ids == [1, 2, 3]
    assert [r.id for r in log.records()] == ids
    assert len(log) == 3


def test_clear_keeps_sequence_monotonic(target: ServerTarget) -> None:
    log = TransmissionLog()
    _append(log, target)
    _append(log, target)

    log.clear()
    assert log.records() == []

    assert _append(log, target).id == 3


def test_listeners_see_each_append_and_can_unsubscribe(target: ServerTarget) -> None:
    log = TransmissionLog()
    seen = []
    unsubscribe = log.subscribe(seen.append)

    first = _append(log, target)
    unsubscribe()
    _append(log, target)

    assert seen == [first]


def test_failing_listener_does_not_lose_record(target: ServerTarget) -> None:
    log = TransmissionLog()

    def broken(record: TransmissionRecord) -> None:
        raise RuntimeError("render failed")

    log.subscribe(broken)
    _append(log, target)

    assert len(log) == 1


def test_stats_count_outcomes(target: ServerTarget) -> None:
    log = TransmissionLog()
    _append(log, target)
    _append(log, target, RecordStatus.ERROR)
    _append(log, target)

    assert log.get_stats() == {"total": 3, "success": 2, "error": 1}


def test_text_rendering(target: ServerTarget) -> None:
    log = TransmissionLog()
    record = _append(log, target, RecordStatus.ERROR)

    assert format_record(record) == (
        "[2026-10-19 09:05:07] 34.225.227.181:5001 - ERROR\n"
        "Packet: $PVT,X*00\n"
        "Response: ACK\n\n"
    )
    assert log.to_text().startswith("Transmission Log\n\n[2026-10-19 09:05:07]")


@pytest.mark.asyncio
async def test_export_writes_file(target: ServerTarget, tmp_path: pathlib.Path) -> None:
    log = TransmissionLog()
    _append(log, target)
    _append(log, target)

    path = tmp_path / "log.txt"
    count = await log.export(str(path))

    assert count == 2
    assert path.read_text(encoding="utf-8") == log.to_text()

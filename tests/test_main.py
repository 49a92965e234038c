from __future__ import annotations

import pytest

from ais140_emulator.__main__ import parse_args, run

from conftest import SCENARIO_IMEI


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> pytest.MonkeyPatch:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VENDOR_ID", "VNDR")
    return monkeypatch


@pytest.mark.asyncio
async def test_preview_prints_packets(isolated_env, capsys) -> None:
    isolated_env.setenv("DEVICE_IMEI", SCENARIO_IMEI)

    assert await run(parse_args(["--preview"])) == 0

    out = capsys.readouterr().out
    assert f"$LGN,VNDR,{SCENARIO_IMEI}," in out
    assert "$PVT,VNDR," in out


@pytest.mark.asyncio
async def test_preview_with_invalid_imei_exits_with_config_error(isolated_env, capsys) -> None:
    isolated_env.setenv("DEVICE_IMEI", "12345")

    assert await run(parse_args(["--preview"])) == 2
    assert "IMEI must be 15 digits" in capsys.readouterr().err

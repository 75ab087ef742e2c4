from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from statement_ingest import cli
from statement_ingest.config import IngestSettings
from tests.helpers.db import count_transactions, get_statement, make_statement

CSV = (
    "תאריך תנועה,תאריך ערך,אסמכתא,תיאור,סכום פעולה,מטבע,חיוב/זיכוי\n"
    "05/03/2024,05/03/2024,9921,משכורת,5000,ILS,זיכוי\n"
    "06/03/2024,06/03/2024,9922,117-2712169/SuperMarket Co,250.40,ILS,חיוב\n"
)


@pytest.fixture
def settings(workspace) -> IngestSettings:
    return IngestSettings(storage_root=workspace.storage_root)


@pytest.fixture(autouse=True)
def _no_openai_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def _write(tmp_path: Path, name: str, content: str | bytes) -> Path:
    p = tmp_path / name
    if isinstance(content, str):
        p.write_text(content, encoding="utf-8")
    else:
        p.write_bytes(content)
    return p


def test_register_then_process_from_local_file(workspace, settings, tmp_path, capsys):
    path = _write(tmp_path, "One_Zero_March.csv", CSV)

    code = cli.cmd_register(
        path,
        user_id="user-7",
        bank_name=None,
        currency="ils",
        process=True,
        database_url=workspace.database_url,
        settings=settings,
    )

    assert code == 0
    out_lines = capsys.readouterr().out.strip().splitlines()
    sid = out_lines[0]
    assert json.loads(out_lines[1]) == {
        "success": True,
        "transactionsCount": 2,
        "totalIncome": 5000.0,
        "totalExpenses": 250.4,
    }
    stmt = get_statement(workspace.database_url, sid)
    assert stmt.bank_name == "One Zero"
    assert stmt.currency == "ILS"
    assert stmt.user_id == "user-7"
    assert (workspace.storage_root / stmt.file_url).read_text(encoding="utf-8") == CSV

    assert cli.cmd_status(sid, database_url=workspace.database_url) == 0
    status_line = capsys.readouterr().out
    assert "\tcompleted\ttransactions=2" in status_line
    assert "net=4749.60" in status_line


def test_register_rejects_unsupported_file(workspace, settings, tmp_path, capsys):
    path = _write(tmp_path, "notes.txt", "hello")

    code = cli.cmd_register(
        path,
        user_id="user-7",
        bank_name=None,
        currency="ILS",
        process=False,
        database_url=workspace.database_url,
        settings=settings,
    )

    assert code == 1
    assert "must be CSV or PDF" in capsys.readouterr().err


def test_pdf_without_api_key_fails_and_is_reported(workspace, settings, tmp_path, capsys):
    path = _write(tmp_path, "card.pdf", b"%PDF-1.4")

    code = cli.cmd_register(
        path,
        user_id="user-7",
        bank_name="Isracard",
        currency="ILS",
        process=True,
        database_url=workspace.database_url,
        settings=settings,
    )

    assert code == 1
    sid, payload = capsys.readouterr().out.strip().splitlines()
    assert json.loads(payload) == {"success": False, "error": "PDF extraction is not configured"}
    assert get_statement(workspace.database_url, sid).status == "failed"

    assert cli.cmd_watch(sid, interval=0, stuck_after=5, database_url=workspace.database_url) == 1
    assert "\tfailed\t100%\terror=PDF extraction is not configured" in capsys.readouterr().out


def test_process_many_and_sweep(workspace, settings, capsys):
    key = workspace.put("user-1/a.csv", CSV)
    ok = make_statement(workspace.database_url, file_url=key)
    broken = make_statement(workspace.database_url, file_url="user-1/missing.csv")
    stale = make_statement(
        workspace.database_url,
        file_url=key,
        created_at=datetime.now(UTC) - timedelta(hours=3),
    )

    code = cli.cmd_process_many(
        [ok, broken],
        concurrency=2,
        database_url=workspace.database_url,
        settings=settings,
    )
    assert code == 1
    lines = capsys.readouterr().out.strip().splitlines()
    assert [line.split("\t")[0] for line in lines] == [ok, broken]
    assert count_transactions(workspace.database_url, ok) == 2

    assert (
        cli.cmd_sweep_stale(
            older_than_sec=3600, database_url=workspace.database_url, settings=settings
        )
        == 0
    )
    assert capsys.readouterr().out.strip().splitlines() == [stale]
    assert get_statement(workspace.database_url, stale).status == "failed"


def test_status_for_unknown_statement(workspace, capsys):
    assert cli.cmd_status("nope", database_url=workspace.database_url) == 1
    assert "Statement not found" in capsys.readouterr().err

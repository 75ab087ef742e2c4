from __future__ import annotations

import itertools
import logging
import textwrap
from datetime import date
from decimal import Decimal

import pytest

from statement_ingest import persistence
from statement_ingest.config import IngestSettings
from statement_ingest.ingest.document import OpenAIDocumentExtractor
from statement_ingest.orchestrator import StatementProcessor, compute_totals, process
from tests.helpers.db import count_transactions, get_statement, list_transactions, make_statement
from tests.helpers.openai_stub import OpenAIStub, extracted_tx

HEADER = "תאריך תנועה,תאריך ערך,אסמכתא,תיאור,סכום פעולה,מטבע,חיוב/זיכוי"

SALARY_CSV = f"{HEADER}\n05/03/2024,05/03/2024,9921,משכורת,5000,ILS,זיכוי\n"

MIXED_CSV = textwrap.dedent(
    f"""\
    {HEADER}
    05/03/2024,05/03/2024,9921,משכורת,5000,ILS,זיכוי
    06/03/2024,06/03/2024,9922,117-2712169/SuperMarket Co,"1,234.50",₪,חיוב
    07/03/2024,broken
    09/03/2024,09/03/2024,9923,Coffee Bar,-18.30,ILS,חיוב
    2024/03,10/03/2024,9924,Cafe,10,ILS,חיוב
    12/03/2024,12/03/2024,9925,ביטול עסקה/Shop,99.99,ILS,זיכוי
    """
)


def _register(ws, content: str | bytes, *, name: str = "statement.csv", **kw) -> str:
    key = ws.put(f"user-1/{name}", content)
    return make_statement(ws.database_url, file_url=key, **kw)


def _processor(ws, **kw) -> StatementProcessor:
    return StatementProcessor(file_store=ws.store, database_url=ws.database_url, **kw)


# ---- happy paths -----------------------------------------------------------------


def test_salary_statement_end_to_end(workspace):
    sid = _register(workspace, SALARY_CSV)

    result = _processor(workspace).process(sid)

    assert result.success is True
    assert result.to_dict() == {
        "success": True,
        "transactionsCount": 1,
        "totalIncome": 5000.0,
        "totalExpenses": 0.0,
    }
    (tx,) = list_transactions(workspace.database_url, sid)
    assert tx.transaction_direction == "income"
    assert tx.category == "Salary"
    assert tx.original_amount == Decimal("5000")
    assert tx.transaction_date == date(2024, 3, 5)
    assert tx.original_currency == "ILS"
    assert tx.bank_statement_id == sid
    assert tx.user_id == "user-1"
    assert tx.source_bank == "One Zero"

    stmt = get_statement(workspace.database_url, sid)
    assert stmt.status == "completed"
    assert stmt.total_income == Decimal("5000")
    assert stmt.total_expenses == Decimal("0")
    assert stmt.net_cashflow == Decimal("5000")
    assert stmt.processed_at is not None
    assert stmt.error_message is None
    assert stmt.card_number is None
    assert stmt.statement_total is None


def test_bad_rows_are_counted_and_totals_match_persisted_rows(workspace):
    sid = _register(workspace, MIXED_CSV)

    result = _processor(workspace).process(sid)

    assert result.success is True
    assert result.transactions_count == 4
    assert result.rows_skipped == 2

    rows = list_transactions(workspace.database_url, sid)
    assert len(rows) == 4
    assert all(r.original_amount >= 0 for r in rows)
    income = sum((r.original_amount for r in rows if r.transaction_direction == "income"), Decimal(0))
    expenses = sum(
        (r.original_amount for r in rows if r.transaction_direction == "expense"), Decimal(0)
    )
    assert result.total_income == income == Decimal("5099.99")
    assert result.total_expenses == expenses == Decimal("1252.80")
    assert result.net_cashflow == result.total_income - result.total_expenses

    stmt = get_statement(workspace.database_url, sid)
    assert stmt.total_income == income
    assert stmt.total_expenses == expenses
    assert stmt.net_cashflow == income - expenses
    assert stmt.rows_skipped == 2
    assert (stmt.statement_date_from, stmt.statement_date_to) == (
        date(2024, 3, 5),
        date(2024, 3, 12),
    )

    by_merchant = {r.merchant_name: r for r in rows}
    assert by_merchant["SuperMarket Co"].category == "Groceries"
    assert by_merchant["Coffee Bar"].category == "Food & Dining"
    refund = by_merchant["Shop"]
    assert (refund.transaction_direction, refund.transaction_type) == ("income", "refund")
    assert refund.category == "Other Income"


def test_english_header_on_unknown_bank(workspace):
    content = (
        "date,x,y,description,amount,currency,direction\n"
        "05/03/2024,a,b,Salary Transfer,5000,ILS,זיכוי\n"
    )
    sid = _register(workspace, content, bank_name="Unknown Bank")

    result = _processor(workspace).process(sid)

    assert result.success is True
    (tx,) = list_transactions(workspace.database_url, sid)
    assert tx.transaction_direction == "income"
    assert tx.category == "Salary"
    assert tx.original_amount == Decimal("5000")
    assert tx.transaction_date == date(2024, 3, 5)
    assert tx.merchant_name == "Salary Transfer"


def test_local_currency_label_keeps_the_row(workspace):
    sid = _register(
        workspace,
        f"{HEADER}\n"
        "05/03/2024,05/03/2024,9921,משכורת,5000,שקל חדש,זיכוי\n"
        "06/03/2024,06/03/2024,9922,Coffee Bar,20,מטבע לא ידוע,חיוב\n",
    )

    result = _processor(workspace).process(sid)

    assert result.success is True
    assert result.rows_skipped == 0
    assert result.total_income == Decimal("5000")
    assert result.total_expenses == Decimal("20")
    rows = list_transactions(workspace.database_url, sid)
    assert {r.original_currency for r in rows} == {"ILS"}
    assert all(r.base_amount == r.original_amount for r in rows)


def test_stage_listener_sees_stages_in_order(workspace):
    sid = _register(workspace, SALARY_CSV)
    seen: list[str] = []

    _processor(workspace, on_stage=lambda _sid, stage: seen.append(stage)).process(sid)

    assert seen == ["pending", "downloading", "parsing", "persisting", "completed"]


def test_pdf_statement_uses_extractor_and_category_hint(workspace):
    sid = _register(workspace, b"%PDF-1.4 fake", name="card.pdf", file_type="pdf")
    stub = OpenAIStub(
        {
            "transactions": [
                extracted_tx(merchant="Zara", category="Shopping"),
                extracted_tx(
                    merchant="Amazon",
                    category="Shopping",
                    original_amount=10,
                    original_currency="USD",
                    exchange_rate=3.7,
                    amount_ils=37.5,
                    type="refund",
                ),
                {"merchant": "missing everything"},
            ],
            "card_last_4": "4580",
            "card_type": "Visa",
            "statement_date": "10/04/2024",
            "total_amount": 158.0,
        }
    )
    extractor = OpenAIDocumentExtractor(model="test-model", client=stub)

    result = _processor(workspace, extractor=extractor).process(sid)

    assert result.success is True
    assert result.transactions_count == 2
    assert result.rows_skipped == 1
    rows = {r.merchant_name: r for r in list_transactions(workspace.database_url, sid)}
    assert rows["Zara"].category == "Shopping"
    assert rows["Zara"].payment_date == date(2024, 4, 10)
    amazon = rows["Amazon"]
    assert amazon.transaction_direction == "income"
    assert amazon.transaction_type == "refund"
    assert amazon.base_amount == Decimal("37.50")
    assert amazon.exchange_rate == Decimal("3.7")

    stmt = get_statement(workspace.database_url, sid)
    assert stmt.card_number == "****4580"
    assert stmt.card_type == "Visa"
    assert stmt.statement_date == date(2024, 4, 10)
    assert stmt.statement_total == Decimal("158.00")


def test_process_convenience_wrapper(workspace):
    sid = _register(workspace, SALARY_CSV)
    result = process(sid, file_store=workspace.store, database_url=workspace.database_url)
    assert result.success is True


# ---- failure paths -----------------------------------------------------------------


def test_missing_statement_reports_not_found_without_writes(workspace):
    other = _register(workspace, SALARY_CSV)

    result = _processor(workspace).process("does-not-exist")

    assert result.success is False
    assert result.to_dict() == {
        "success": False,
        "error": "Statement not found: does-not-exist",
    }
    assert get_statement(workspace.database_url, other).status == "processing"
    assert count_transactions(workspace.database_url) == 0


def test_download_failure_marks_statement_failed(workspace, caplog: pytest.LogCaptureFixture):
    sid = make_statement(workspace.database_url, file_url="user-1/nowhere.csv")

    with caplog.at_level(logging.ERROR, logger="statement_ingest"):
        result = _processor(workspace).process(sid)

    assert result.success is False
    assert result.error.startswith("Failed to download file")
    stmt = get_statement(workspace.database_url, sid)
    assert stmt.status == "failed"
    assert stmt.error_message == result.error
    assert any("process:failed" in r.getMessage() for r in caplog.records)


def test_header_only_file_fails_with_format_error(workspace):
    sid = _register(workspace, HEADER + "\n")

    result = _processor(workspace).process(sid)

    assert result.success is False
    assert "need a header and at least one row" in result.error
    assert get_statement(workspace.database_url, sid).status == "failed"


def test_pdf_without_extractor_fails_cleanly(workspace):
    sid = _register(workspace, b"%PDF-1.4", name="card.pdf", file_type="pdf")

    result = _processor(workspace).process(sid)

    assert result.success is False
    assert result.error == "PDF extraction is not configured"


def test_extraction_capability_failure_marks_failed(workspace):
    sid = _register(workspace, b"%PDF-1.4", name="card.pdf", file_type="pdf")
    extractor = OpenAIDocumentExtractor(client=OpenAIStub(error=RuntimeError("upstream 500")))

    result = _processor(workspace, extractor=extractor).process(sid)

    assert result.success is False
    assert get_statement(workspace.database_url, sid).error_message == "upstream 500"


def test_failed_final_update_rolls_back_inserted_rows(workspace, monkeypatch):
    sid = _register(workspace, MIXED_CSV)

    def _boom(*_a, **_kw):
        raise persistence.PersistenceError("Failed to update statement: injected")

    monkeypatch.setattr(persistence, "complete_statement", _boom)

    result = _processor(workspace).process(sid)

    assert result.success is False
    assert count_transactions(workspace.database_url, sid) == 0
    stmt = get_statement(workspace.database_url, sid)
    assert stmt.status == "failed"
    assert stmt.error_message == "Failed to update statement: injected"
    assert stmt.total_income is None


def test_constraint_violation_mid_batch_leaves_no_rows(workspace, monkeypatch):
    sid = _register(workspace, MIXED_CSV)
    original = persistence.build_transaction_payloads

    def _corrupt_last(statement, transactions):
        payloads = original(statement, transactions)
        payloads[-1]["transaction_direction"] = "sideways"
        return payloads

    monkeypatch.setattr(persistence, "build_transaction_payloads", _corrupt_last)

    result = _processor(workspace).process(sid)

    assert result.success is False
    assert result.error.startswith("Failed to insert transactions")
    assert count_transactions(workspace.database_url, sid) == 0
    assert get_statement(workspace.database_url, sid).status == "failed"


def test_timeout_between_stages_marks_failed(workspace):
    sid = _register(workspace, SALARY_CSV)
    ticks = itertools.count(start=0, step=10)
    processor = _processor(
        workspace,
        settings=IngestSettings(process_timeout_sec=5),
        clock=lambda: float(next(ticks)),
    )

    result = processor.process(sid)

    assert result.success is False
    assert "Processing exceeded 5s during downloading" in result.error
    assert count_transactions(workspace.database_url, sid) == 0
    assert get_statement(workspace.database_url, sid).status == "failed"


def test_listener_errors_do_not_break_processing(workspace):
    sid = _register(workspace, SALARY_CSV)

    def _listener(_sid, _stage):
        raise RuntimeError("ui went away")

    assert _processor(workspace, on_stage=_listener).process(sid).success is True


# ---- repeated runs / many statements ---------------------------------------------------


def test_processing_twice_inserts_duplicates(workspace):
    sid = _register(workspace, SALARY_CSV)
    processor = _processor(workspace)

    assert processor.process(sid).success is True
    assert processor.process(sid).success is True

    assert count_transactions(workspace.database_url, sid) == 2
    assert get_statement(workspace.database_url, sid).status == "completed"


def test_process_many_keeps_input_order(workspace):
    first = _register(workspace, SALARY_CSV, name="a.csv")
    second = _register(workspace, MIXED_CSV, name="b.csv")

    results = _processor(workspace).process_many([first, "missing", second], concurrency=2)

    assert [r.statement_id for r in results] == [first, "missing", second]
    assert [r.success for r in results] == [True, False, True]
    assert count_transactions(workspace.database_url) == 5


def test_process_many_rejects_bad_concurrency(workspace):
    with pytest.raises(ValueError):
        _processor(workspace).process_many(["x"], concurrency=-1)


def test_compute_totals_is_exact():
    from statement_ingest.models import NormalizedTransaction

    def _tx(amount: str, direction: str) -> NormalizedTransaction:
        return NormalizedTransaction(
            line_no=1,
            transaction_date=date(2024, 1, 1),
            merchant_name="m",
            original_amount=Decimal(amount),
            original_currency="ILS",
            direction=direction,
            type="regular",
        )

    totals = compute_totals([_tx("0.10", "expense"), _tx("0.20", "expense"), _tx("0.30", "income")])
    assert totals.total_expenses == Decimal("0.30")
    assert totals.net_cashflow == Decimal("0.00")

import csv
import io
import uuid
from datetime import date, datetime, timezone

from stockbook.core.config import settings
from stockbook.models.stock import StockMovement
from stockbook.services.pdf_export_service import PdfColumn, _escape_pdf_text, build_table_pdf
from stockbook.services.report_service import report_filename, report_window


def _register(client, *, email: str, full_name: str = "Owner"):
    return client.post(
        "/auth/register",
        json={"email": email, "full_name": full_name, "password": "password123"},
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner(client, email: str) -> tuple[str, str]:
    res = _register(client, email=email)
    assert res.status_code == 200, res.text
    token = res.json()["access_token"]
    me = client.get("/auth/me", headers=_auth_headers(token))
    assert me.status_code == 200, me.text
    return token, me.json()["business_id"]


def _seed_entries(session_local, business_id: str, rows: list[tuple[datetime, int, str, str | None]]) -> None:
    db = session_local()
    try:
        for created_at, quantity, movement_type, reference in rows:
            db.add(
                StockMovement(
                    id=str(uuid.uuid4()),
                    business_id=business_id,
                    variant_id="variant-1",
                    warehouse_id="warehouse-1",
                    quantity=quantity,
                    movement_type=movement_type,
                    reference=reference,
                    product_name_cache="Ankara Tote",
                    variant_name_cache="Blue",
                    sku_cache=None,
                    created_at=created_at,
                )
            )
        db.commit()
    finally:
        db.close()


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _export(client, token: str, start: str, end: str, fmt: str = "csv"):
    return client.get(
        f"/reports/stock-movements?start_date={start}&end_date={end}&format={fmt}",
        headers=_auth_headers(token),
    )


def test_csv_report_includes_whole_end_day_and_excludes_outside_rows(test_context):
    client, session_local = test_context
    token, business_id = _owner(client, "report-csv@example.com")
    _seed_entries(
        session_local,
        business_id,
        [
            (_utc(2026, 2, 28, 23, 59, 59), 1, "in", "too early"),
            (_utc(2026, 3, 1, 0, 0, 0), 10, "in", "Opening delivery"),
            (_utc(2026, 3, 2, 12, 30), -3, "sale", "Order ABC"),
            (_utc(2026, 3, 3, 23, 59, 59), -1, "damaged", None),
            (_utc(2026, 3, 4, 0, 0, 0), 5, "in", "too late"),
        ],
    )

    res = _export(client, token, "2026-03-01", "2026-03-03")
    assert res.status_code == 200, res.text
    assert res.headers["content-type"].startswith("text/csv")
    assert res.headers["content-disposition"] == 'attachment; filename="stock_movements_2026-03-01_2026-03-03.csv"'

    rows = list(csv.reader(io.StringIO(res.text)))
    assert rows[0] == ["Date", "Product", "Variant", "SKU", "Type", "Quantity", "Reference"]
    body = rows[1:]
    assert [row[0] for row in body] == ["2026-03-01 00:00", "2026-03-02 12:30", "2026-03-03 23:59"]
    assert body[0] == ["2026-03-01 00:00", "Ankara Tote", "Blue", "N/A", "in", "10", "Opening delivery"]
    assert body[1][4:6] == ["sale", "-3"]
    assert body[2][6] == ""


def test_single_day_window_covers_the_full_day(test_context):
    client, session_local = test_context
    token, business_id = _owner(client, "report-day@example.com")
    _seed_entries(
        session_local,
        business_id,
        [(_utc(2026, 5, 10, 0, 0, 1), 2, "in", None), (_utc(2026, 5, 10, 23, 59, 58), -1, "out", None)],
    )

    res = _export(client, token, "2026-05-10", "2026-05-10")
    assert res.status_code == 200, res.text
    assert len(list(csv.reader(io.StringIO(res.text)))) == 3


def test_pdf_report_paginates_rows(test_context, monkeypatch):
    client, session_local = test_context
    token, business_id = _owner(client, "report-pdf@example.com")
    _seed_entries(
        session_local,
        business_id,
        [(_utc(2026, 4, 1, hour, 0), hour + 1, "in", f"Delivery {hour}") for hour in range(7)],
    )
    monkeypatch.setattr(settings, "report_pdf_rows_per_page", 5)

    res = _export(client, token, "2026-04-01", "2026-04-01", fmt="pdf")
    assert res.status_code == 200, res.text
    assert res.headers["content-type"] == "application/pdf"
    assert res.headers["content-disposition"].endswith('filename="stock_movements_2026-04-01_2026-04-01.pdf"')
    assert res.content.startswith(b"%PDF")
    assert b"Stock movements report" in res.content
    assert b"Page 1 / 2" in res.content
    assert b"Page 2 / 2" in res.content
    assert b"Delivery 6" in res.content


def test_empty_window_returns_404(test_context):
    client, session_local = test_context
    token, business_id = _owner(client, "report-empty@example.com")
    _seed_entries(session_local, business_id, [(_utc(2026, 1, 5, 10, 0), 1, "in", None)])

    res = _export(client, token, "2026-02-01", "2026-02-28")
    assert res.status_code == 404, res.text
    assert res.json()["error"]["message"] == "No stock movements found for the selected period"


def test_report_is_tenant_isolated(test_context):
    client, session_local = test_context
    _, business_1 = _owner(client, "report-a@example.com")
    token_2, _ = _owner(client, "report-b@example.com")
    _seed_entries(session_local, business_1, [(_utc(2026, 6, 1, 8, 0), 3, "in", None)])

    res = _export(client, token_2, "2026-06-01", "2026-06-01")
    assert res.status_code == 404, res.text


def test_invalid_range_and_format_are_rejected(test_context):
    client, _ = test_context
    token, _ = _owner(client, "report-bad@example.com")

    reversed_range = _export(client, token, "2026-03-05", "2026-03-01")
    assert reversed_range.status_code == 400, reversed_range.text

    bad_format = _export(client, token, "2026-03-01", "2026-03-05", fmt="xlsx")
    assert bad_format.status_code == 422, bad_format.text


def test_report_filename_and_window_label():
    window = report_window(date(2026, 3, 1), date(2026, 3, 31))
    assert report_filename(window, "pdf") == "stock_movements_2026-03-01_2026-03-31.pdf"
    assert window.label == "2026-03-01 to 2026-03-31"
    assert window.ends_at == _utc(2026, 3, 31, 23, 59, 59, 999000)


def test_end_day_boundary_is_millisecond_inclusive(test_context):
    client, session_local = test_context
    token, business_id = _owner(client, "report-edge@example.com")
    _seed_entries(
        session_local,
        business_id,
        [
            (_utc(2026, 7, 31, 23, 59, 59, 999000), 4, "in", "last instant"),
            (_utc(2026, 8, 1, 0, 0, 0), 6, "in", "next day"),
        ],
    )

    res = _export(client, token, "2026-07-01", "2026-07-31")
    assert res.status_code == 200, res.text
    body = list(csv.reader(io.StringIO(res.text)))[1:]
    assert [row[6] for row in body] == ["last instant"]


def test_window_over_row_limit_is_rejected_not_truncated(test_context, monkeypatch):
    client, session_local = test_context
    token, business_id = _owner(client, "report-cap@example.com")
    _seed_entries(
        session_local,
        business_id,
        [(_utc(2026, 1, 1, hour, 0), 1, "in", f"Batch {hour}") for hour in range(3)],
    )

    monkeypatch.setattr(settings, "report_max_rows", 3)
    full = _export(client, token, "2026-01-01", "2026-01-01")
    assert full.status_code == 200, full.text
    assert len(list(csv.reader(io.StringIO(full.text)))) - 1 == 3

    monkeypatch.setattr(settings, "report_max_rows", 2)
    for fmt in ("csv", "pdf"):
        res = _export(client, token, "2026-01-01", "2026-01-01", fmt=fmt)
        assert res.status_code == 400, res.text
        assert "narrow the date range" in res.json()["error"]["message"]


def test_pdf_text_keeps_windows_1252_characters():
    text = "Bœuf 5€ l’été"
    assert _escape_pdf_text(text) == text
    assert _escape_pdf_text("(a\\b)") == "\\(a\\\\b\\)"
    assert _escape_pdf_text("漢") == "?"

    content = build_table_pdf(
        title="Stock movements report",
        subtitle="2026-01-01 to 2026-01-01",
        columns=[PdfColumn("Product", 400)],
        rows=[[text]],
    )
    assert text.encode("cp1252") in content

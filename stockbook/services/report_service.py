import csv
import io
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockbook.core.config import settings
from stockbook.core.time_utils import as_utc, end_of_day, start_of_day
from stockbook.models.stock import StockMovement
from stockbook.services.pdf_export_service import PdfColumn, build_table_pdf

REPORT_FORMATS = ("csv", "pdf")
MISSING_LABEL = "N/A"
CSV_HEADERS = ["Date", "Product", "Variant", "SKU", "Type", "Quantity", "Reference"]
PDF_COLUMNS = [
    PdfColumn("Date", 110),
    PdfColumn("Product", 130),
    PdfColumn("Variant", 90),
    PdfColumn("Type", 65),
    PdfColumn("Qty", 45),
    PdfColumn("Reference", 92),
]


class ReportError(ValueError):
    pass


class ReportTooLargeError(ReportError):
    pass


class EmptyReportError(ReportError):
    pass


@dataclass(frozen=True)
class ReportWindow:
    start_date: date
    end_date: date

    @property
    def starts_at(self) -> datetime:
        return start_of_day(self.start_date)

    @property
    def ends_at(self) -> datetime:
        return end_of_day(self.end_date)

    @property
    def label(self) -> str:
        return f"{self.start_date.isoformat()} to {self.end_date.isoformat()}"


def report_window(start_date: date, end_date: date) -> ReportWindow:
    if end_date < start_date:
        raise ReportError("end_date must be on or after start_date")
    return ReportWindow(start_date=start_date, end_date=end_date)


def extract_movements(db: Session, *, business_id: str, window: ReportWindow) -> list[StockMovement]:
    """Load every movement in the window, oldest first.

    Raises ``ReportTooLargeError`` instead of returning a partial ledger when the
    window holds more than ``settings.report_max_rows`` movements.
    """
    max_rows = settings.report_max_rows
    entries = db.execute(
        select(StockMovement)
        .where(
            StockMovement.business_id == business_id,
            StockMovement.created_at >= window.starts_at,
            StockMovement.created_at <= window.ends_at,
        )
        .order_by(StockMovement.created_at.asc())
        .limit(max_rows + 1)
    ).scalars().all()
    if len(entries) > max_rows:
        raise ReportTooLargeError(
            f"More than {max_rows} stock movements fall in the selected period; narrow the date range"
        )
    return entries


def report_filename(window: ReportWindow, fmt: str) -> str:
    return f"stock_movements_{window.start_date.isoformat()}_{window.end_date.isoformat()}.{fmt}"


def _format_timestamp(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M")


def _label(value: str | None) -> str:
    return value if value else MISSING_LABEL


def movements_to_csv(entries: list[StockMovement]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        writer.writerow(
            [
                _format_timestamp(entry.created_at),
                _label(entry.product_name_cache),
                _label(entry.variant_name_cache),
                _label(entry.sku_cache),
                entry.movement_type,
                entry.quantity,
                entry.reference or "",
            ]
        )
    return buffer.getvalue()


def movements_to_pdf(entries: list[StockMovement], window: ReportWindow) -> bytes:
    rows = [
        [
            _format_timestamp(entry.created_at),
            _label(entry.product_name_cache),
            _label(entry.variant_name_cache),
            entry.movement_type,
            str(entry.quantity),
            entry.reference or "",
        ]
        for entry in entries
    ]
    return build_table_pdf(
        title="Stock movements report",
        subtitle=f"Period: {window.label}",
        columns=PDF_COLUMNS,
        rows=rows,
        rows_per_page=settings.report_pdf_rows_per_page,
    )


def render_report(
    db: Session, *, business_id: str, window: ReportWindow, fmt: str
) -> tuple[bytes, str, str]:
    """Return ``(content, media_type, filename)`` for the requested format."""
    if fmt not in REPORT_FORMATS:
        raise ReportError(f"Unsupported report format: {fmt}")

    entries = extract_movements(db, business_id=business_id, window=window)
    if not entries:
        raise EmptyReportError("No stock movements found for the selected period")

    if fmt == "csv":
        return movements_to_csv(entries).encode("utf-8"), "text/csv", report_filename(window, fmt)
    return movements_to_pdf(entries, window), "application/pdf", report_filename(window, fmt)

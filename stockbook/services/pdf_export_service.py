from __future__ import annotations

from dataclasses import dataclass

PAGE_WIDTH = 612
PAGE_HEIGHT = 792
LEFT_MARGIN = 40
TOP_Y = 750
LINE_HEIGHT = 14
FONT_SIZE = 9


@dataclass(frozen=True)
class PdfColumn:
    header: str
    width: int  # points

    @property
    def max_chars(self) -> int:
        # Helvetica averages roughly half the font size per glyph.
        return max(int(self.width / (FONT_SIZE * 0.5)) - 1, 1)


def _escape_pdf_text(value: str) -> str:
    escaped = value.replace("\\", "\\\\")
    escaped = escaped.replace("(", "\\(")
    escaped = escaped.replace(")", "\\)")
    # Fonts are declared with WinAnsiEncoding (cp1252).
    return escaped.encode("cp1252", errors="replace").decode("cp1252")


def _fit(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    if max_chars <= 3:
        return value[:max_chars]
    return value[: max_chars - 3] + "..."


def _text_at(x: float, y: float, text: str, font: str = "/F1") -> str:
    return f"BT {font} {FONT_SIZE} Tf 1 0 0 1 {x:.1f} {y:.1f} Tm ({_escape_pdf_text(text)}) Tj ET"


def _page_stream(
    *,
    title: str,
    subtitle: str,
    columns: list[PdfColumn],
    rows: list[list[str]],
    page_number: int,
    page_count: int,
) -> bytes:
    commands: list[str] = []
    y = TOP_Y
    commands.append(f"BT /F2 14 Tf 1 0 0 1 {LEFT_MARGIN} {y} Tm ({_escape_pdf_text(title)}) Tj ET")
    y -= LINE_HEIGHT + 6
    commands.append(_text_at(LEFT_MARGIN, y, subtitle))
    y -= LINE_HEIGHT + 6

    x = LEFT_MARGIN
    for column in columns:
        commands.append(_text_at(x, y, _fit(column.header, column.max_chars), font="/F2"))
        x += column.width
    table_width = sum(column.width for column in columns)
    commands.append(f"{LEFT_MARGIN} {y - 4} m {LEFT_MARGIN + table_width} {y - 4} l S")
    y -= LINE_HEIGHT + 2

    for row in rows:
        x = LEFT_MARGIN
        for column, cell in zip(columns, row):
            commands.append(_text_at(x, y, _fit(cell, column.max_chars)))
            x += column.width
        y -= LINE_HEIGHT

    commands.append(_text_at(PAGE_WIDTH - LEFT_MARGIN - 60, 30, f"Page {page_number} / {page_count}"))
    return "\n".join(commands).encode("cp1252", errors="replace")


def build_table_pdf(
    *,
    title: str,
    subtitle: str,
    columns: list[PdfColumn],
    rows: list[list[str]],
    rows_per_page: int = 40,
) -> bytes:
    """Render a simple multi-page table document with base-14 fonts."""
    pages = [rows[i : i + rows_per_page] for i in range(0, len(rows), rows_per_page)] or [[]]
    page_count = len(pages)

    # 1 catalog, 2 page tree, 3-4 fonts, then a (page, contents) pair per page.
    first_page_obj = 5
    kids = " ".join(f"{first_page_obj + 2 * i} 0 R" for i in range(page_count))
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode("ascii"),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica-Bold /Encoding /WinAnsiEncoding >>",
    ]
    for index, page_rows in enumerate(pages):
        contents_obj = first_page_obj + 2 * index + 1
        objects.append(
            (
                f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 {PAGE_WIDTH} {PAGE_HEIGHT}] "
                f"/Resources << /Font << /F1 3 0 R /F2 4 0 R >> >> /Contents {contents_obj} 0 R >>"
            ).encode("ascii")
        )
        stream = _page_stream(
            title=title,
            subtitle=subtitle,
            columns=columns,
            rows=page_rows,
            page_number=index + 1,
            page_count=page_count,
        )
        objects.append(b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream))

    pdf = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n"
    offsets: list[int] = []
    for index, obj in enumerate(objects, start=1):
        offsets.append(len(pdf))
        pdf += f"{index} 0 obj\n".encode("ascii")
        pdf += obj + b"\nendobj\n"

    xref_offset = len(pdf)
    pdf += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    pdf += b"0000000000 65535 f \n"
    for offset in offsets:
        pdf += f"{offset:010d} 00000 n \n".encode("ascii")
    pdf += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF"
    ).encode("ascii")
    return pdf

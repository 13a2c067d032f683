"""Render expense lists as downloadable CSV, XLSX and PDF documents."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .models import Expense
from .validators import validate_enum

__all__ = ["EXPORT_FORMATS", "ExportFile", "render", "render_csv", "render_pdf", "render_xlsx"]

HEADERS = ("Date", "Description", "Category", "Amount")


@dataclass(frozen=True)
class ExportFile:
    content: bytes
    mimetype: str
    extension: str


def _format_date(expense: Expense) -> str:
    return expense.date.date().isoformat()


def _rows(expenses: Iterable[Expense]) -> List[Sequence[object]]:
    return [
        (_format_date(expense), expense.description, expense.category, expense.amount)
        for expense in expenses
    ]


def render_csv(expenses: Iterable[Expense]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(HEADERS)
    for date, description, category, amount in _rows(expenses):
        writer.writerow((date, description, category, f"{amount:.2f}"))
    return buffer.getvalue().encode("utf-8")


def render_xlsx(expenses: Iterable[Expense]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Expenses"
    sheet.append(HEADERS)
    for date, description, category, amount in _rows(expenses):
        sheet.append((date, description, category, float(amount)))

    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for column, width in zip("ABCD", (14, 40, 22, 14)):
        sheet.column_dimensions[column].width = width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render_pdf(expenses: Iterable[Expense]) -> bytes:
    rows = _rows(expenses)
    total = sum((row[3] for row in rows), Decimal("0.00"))

    styles = getSampleStyleSheet()
    table = Table(
        [list(HEADERS)] + [[date, desc, cat, f"{amount:.2f}"] for date, desc, cat, amount in rows],
        colWidths=(80, 250, 110, 60),
        repeatRows=1,
    )
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.black),
                ("ALIGN", (3, 0), (3, -1), "RIGHT"),
            ]
        )
    )

    buffer = io.BytesIO()
    document = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=40, rightMargin=40)
    document.build(
        [
            Paragraph("Expense report", styles["Title"]),
            Spacer(1, 12),
            table,
            Spacer(1, 12),
            Paragraph(f"Total: {total:.2f}", styles["Heading3"]),
        ]
    )
    return buffer.getvalue()


_RENDERERS: Dict[str, Tuple] = {
    "csv": (render_csv, "text/csv; charset=utf-8"),
    "xlsx": (render_xlsx, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
    "pdf": (render_pdf, "application/pdf"),
}

EXPORT_FORMATS = frozenset(_RENDERERS)


def render(fmt: object, expenses: Iterable[Expense]) -> ExportFile:
    """Render ``expenses`` in the named format."""
    fmt = validate_enum(fmt if fmt is not None else "csv", "format", EXPORT_FORMATS)
    renderer, mimetype = _RENDERERS[fmt]
    return ExportFile(content=renderer(list(expenses)), mimetype=mimetype, extension=fmt)

"""Spreadsheet rendering of executive report models with openpyxl."""

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional, Set, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from ..ingest.normalizer import parse_currency
from ..models.report import InsightPriority, RenderResult, ReportModel, ReportTable, RowHighlight
from .exporter import Renderer
from .pdf_renderer import _slug

logger = logging.getLogger(__name__)

NAVY = "003366"

HIGHLIGHT_FILLS = {
    RowHighlight.RISK: "F8D7DA",
    RowHighlight.SUCCESS: "D4EDDA",
    RowHighlight.WARNING: "FFF3CD",
    RowHighlight.HEADER: "E9ECEF",
    RowHighlight.TOTAL: "DEE2E6",
}

PRIORITY_FONTS = {
    InsightPriority.CRITICAL: "B00020",
    InsightPriority.HIGH: "D35400",
    InsightPriority.MEDIUM: "B7950B",
    InsightPriority.INFO: "1F618D",
}

CURRENCY_FORMAT = '"$"#,##0.00'
NUMBER_FORMAT = '#,##0.##'
PERCENT_FORMAT = '0.0%'

# Characters Excel refuses in sheet titles
INVALID_TITLE_CHARS = re.compile(r'[\[\]:*?/\\]')
MAX_TITLE_LENGTH = 31
MAX_COLUMN_WIDTH = 40

_CURRENCY = re.compile(r'^\(?-?\$[\d,]+(\.\d+)?\)?$')
_NUMBER = re.compile(r'^-?\d{1,3}(,\d{3})*(\.\d+)?$|^-?\d+(\.\d+)?$')
_PERCENT = re.compile(r'^[+-]?\d+(\.\d+)?%$')


def cell_value(text: str) -> Tuple[Any, Optional[str]]:
    """
    Typed cell value for a formatted report string.

    Currency ("$1,250.00", "($75)"), plain numbers ("1,204") and
    percentages ("12.5%") become numbers with a matching number format, so
    the workbook sums and sorts; anything else stays text.

    Args:
        text: Formatted cell text from a report table

    Returns:
        (value, number_format); number_format is None for text
    """
    stripped = text.strip()
    if _CURRENCY.match(stripped):
        amount = parse_currency(stripped)
        if amount is not None:
            return amount, CURRENCY_FORMAT
    if _NUMBER.match(stripped):
        return Decimal(stripped.replace(",", "")), NUMBER_FORMAT
    if _PERCENT.match(stripped):
        return Decimal(stripped.rstrip("%")) / 100, PERCENT_FORMAT
    return text, None


def sheet_title(title: str, taken: Set[str]) -> str:
    """Excel-safe, unique sheet title (at most 31 characters)."""
    base = INVALID_TITLE_CHARS.sub(" ", title).strip()[:MAX_TITLE_LENGTH] or "Sheet"
    candidate = base
    counter = 2
    while candidate.lower() in taken:
        suffix = f" ({counter})"
        candidate = base[:MAX_TITLE_LENGTH - len(suffix)] + suffix
        counter += 1
    taken.add(candidate.lower())
    return candidate


class XlsxRenderer(Renderer):
    """
    Renders a ReportModel to an xlsx workbook.

    The first sheet carries the executive summary; every body and appendix
    table gets a sheet of its own with a frozen header row.

    Attributes:
        output_dir: Directory where workbooks are written
    """

    name = "xlsx"

    def __init__(self, output_dir: str = "reports"):
        self.output_dir = Path(output_dir)
        logger.info(f"Initialized XlsxRenderer: output_dir={self.output_dir}")

    def render(self, model: ReportModel) -> RenderResult:
        """
        Render the model to an xlsx file.

        Args:
            model: Report model (the renderer owns this copy)

        Returns:
            RenderResult with the file path
        """
        stamp = datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S-%f')
        path = self.output_dir / f"{_slug(model.title)}-{stamp}.xlsx"

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            sheets = self.render_to(model, str(path))
        except Exception as e:
            logger.error(f"Failed to render '{model.title}' to xlsx: {str(e)}")
            return RenderResult(success=False, error=str(e))

        logger.info(f"Rendered {path} ({sheets} sheets)")
        return RenderResult(success=True, artifact_ref=str(path))

    def render_to(self, model: ReportModel, target) -> int:
        """
        Build the workbook into a path or binary file object.

        Returns:
            Number of sheets written
        """
        workbook = Workbook()
        taken: Set[str] = set()

        summary_sheet = workbook.active
        summary_sheet.title = sheet_title("Summary", taken)
        self._summary(summary_sheet, model)

        for table in model.tables:
            self._table_sheet(workbook.create_sheet(sheet_title(table.title, taken)), table)

        if model.appendix:
            appendix_sheet = workbook.create_sheet(sheet_title("Appendix", taken))
            self._appendix(appendix_sheet, model)
            for section in model.appendix:
                if section.table is not None:
                    self._table_sheet(workbook.create_sheet(sheet_title(section.table.title, taken)), section.table)

        workbook.properties.title = model.title
        workbook.save(target)
        return len(workbook.worksheets)

    def _summary(self, sheet: Worksheet, model: ReportModel):
        summary = model.executive_summary
        sheet.append([model.title.upper()])
        sheet["A1"].font = Font(bold=True, size=14, color=NAVY)
        if model.subtitle:
            sheet.append([model.subtitle])
            sheet.cell(row=sheet.max_row, column=1).font = Font(italic=True, size=10, color="666666")
        if model.classification:
            sheet.append([model.classification])
            sheet.cell(row=sheet.max_row, column=1).font = Font(bold=True, size=8, color="666666")

        if summary.key_takeaway:
            sheet.append([])
            sheet.append([summary.key_takeaway])
            sheet.cell(row=sheet.max_row, column=1).font = Font(bold=True, size=12)

        if summary.metrics:
            sheet.append([])
            self._header(sheet, ["Metric", "Value", "Change", "Context"])
            for metric in summary.metrics:
                self._append_cells(sheet, [metric.label, metric.value, metric.delta or "", metric.context or ""])

        if summary.insights:
            sheet.append([])
            self._header(sheet, ["Priority", "Headline", "Detail", "Action"])
            for insight in summary.insights:
                sheet.append([insight.priority.value.upper(), insight.headline, insight.detail, insight.action or ""])
                sheet.cell(row=sheet.max_row, column=1).font = Font(
                    bold=True, color=PRIORITY_FONTS[insight.priority]
                )

        if summary.bottom_line:
            sheet.append([])
            sheet.append([f"Bottom line: {summary.bottom_line}"])
            sheet.cell(row=sheet.max_row, column=1).font = Font(bold=True)

        self._fit_columns(sheet)

    def _appendix(self, sheet: Worksheet, model: ReportModel):
        for section in model.appendix:
            sheet.append([section.title])
            sheet.cell(row=sheet.max_row, column=1).font = Font(bold=True, size=11, color=NAVY)
            if section.content:
                sheet.append([section.content])
                sheet.cell(row=sheet.max_row, column=1).alignment = Alignment(wrap_text=True, vertical="top")
            if section.table is not None:
                sheet.append([f"See sheet: {section.table.title}"])
            sheet.append([])
        sheet.column_dimensions["A"].width = 100

    def _table_sheet(self, sheet: Worksheet, table: ReportTable):
        self._header(sheet, table.headers)
        sheet.freeze_panes = "A2"

        if not table.rows:
            sheet.append(["No data available."])
        for row in table.rows:
            cells = list(row.cells) + [""] * (len(table.headers) - len(row.cells))
            self._append_cells(sheet, cells)
            if row.highlight is not None:
                fill = PatternFill("solid", fgColor=HIGHLIGHT_FILLS[row.highlight])
                bold = row.highlight in (RowHighlight.TOTAL, RowHighlight.HEADER)
                for cell in sheet[sheet.max_row]:
                    cell.fill = fill
                    if bold:
                        cell.font = Font(bold=True)

        if table.footnote:
            sheet.append([])
            sheet.append([table.footnote])
            sheet.cell(row=sheet.max_row, column=1).font = Font(italic=True, size=8, color="808080")

        self._fit_columns(sheet)

    @staticmethod
    def _header(sheet: Worksheet, headers: List[str]):
        sheet.append(list(headers))
        for cell in sheet[sheet.max_row]:
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = PatternFill("solid", fgColor=NAVY)
            cell.alignment = Alignment(horizontal="center", vertical="center")

    @staticmethod
    def _append_cells(sheet: Worksheet, cells: List[str]):
        typed = [cell_value(str(cell)) for cell in cells]
        sheet.append([value for value, _ in typed])
        for cell, (_, number_format) in zip(sheet[sheet.max_row], typed):
            if number_format:
                cell.number_format = number_format
                cell.alignment = Alignment(horizontal="right")

    @staticmethod
    def _fit_columns(sheet: Worksheet):
        widths = {}
        for row in sheet.iter_rows():
            for cell in row:
                if cell.value is not None:
                    widths[cell.column] = max(widths.get(cell.column, 12), min(len(str(cell.value)), MAX_COLUMN_WIDTH))
        for column, width in widths.items():
            sheet.column_dimensions[get_column_letter(column)].width = width + 4

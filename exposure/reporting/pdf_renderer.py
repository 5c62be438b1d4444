"""PDF rendering of executive report models with reportlab."""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.graphics.charts.barcharts import HorizontalBarChart, VerticalBarChart
from reportlab.graphics.charts.doughnut import Doughnut
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..models.report import (
    ChartSpec,
    ChartType,
    InsightPriority,
    RenderResult,
    ReportModel,
    ReportTable,
    RowHighlight,
)
from .exporter import Renderer

logger = logging.getLogger(__name__)

NAVY = colors.HexColor('#003366')

MARGIN = 0.75 * inch

HIGHLIGHT_COLORS = {
    RowHighlight.RISK: colors.HexColor('#F8D7DA'),
    RowHighlight.SUCCESS: colors.HexColor('#D4EDDA'),
    RowHighlight.WARNING: colors.HexColor('#FFF3CD'),
    RowHighlight.HEADER: colors.HexColor('#E9ECEF'),
    RowHighlight.TOTAL: colors.HexColor('#DEE2E6'),
}

PRIORITY_COLORS = {
    InsightPriority.CRITICAL: '#B00020',
    InsightPriority.HIGH: '#D35400',
    InsightPriority.MEDIUM: '#B7950B',
    InsightPriority.INFO: '#1F618D',
}

DIRECTION_COLORS = {
    "positive": '#1E8449',
    "negative": '#B00020',
    "neutral": '#566573',
}


def _slug(text: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', text.lower()).strip('-') or 'report'


class PdfRenderer(Renderer):
    """
    Renders a ReportModel to a PDF file.

    Attributes:
        output_dir: Directory where PDFs are written
        pagesize: reportlab page size
    """

    name = "pdf"

    def __init__(self, output_dir: str = "reports", pagesize=letter):
        self.output_dir = Path(output_dir)
        self.pagesize = pagesize
        self.styles = self._build_styles()
        logger.info(f"Initialized PdfRenderer: output_dir={self.output_dir}")

    def _build_styles(self):
        styles = getSampleStyleSheet()
        return {
            'title': ParagraphStyle(
                'ReportTitle',
                parent=styles['Heading1'],
                fontSize=18,
                textColor=NAVY,
                spaceAfter=6,
                alignment=TA_CENTER
            ),
            'subtitle': ParagraphStyle(
                'ReportSubtitle',
                parent=styles['Normal'],
                fontSize=10,
                textColor=colors.grey,
                spaceAfter=18,
                alignment=TA_CENTER
            ),
            'heading': ParagraphStyle(
                'ReportHeading',
                parent=styles['Heading2'],
                fontSize=13,
                textColor=NAVY,
                spaceBefore=12,
                spaceAfter=8
            ),
            'takeaway': ParagraphStyle(
                'KeyTakeaway',
                parent=styles['Normal'],
                fontSize=12,
                leading=16,
                spaceAfter=12
            ),
            'body': styles['BodyText'],
            'small': ParagraphStyle('Small', parent=styles['Normal'], fontSize=8, textColor=colors.grey),
            'cell': ParagraphStyle('Cell', parent=styles['Normal'], fontSize=8, leading=10),
            'metric': ParagraphStyle('Metric', parent=styles['Normal'], fontSize=8, leading=15),
        }

    def render(self, model: ReportModel) -> RenderResult:
        """
        Render the model to a PDF file.

        Args:
            model: Report model (the renderer owns this copy)

        Returns:
            RenderResult with the file path and page count
        """
        stamp = datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S-%f')
        path = self.output_dir / f"{_slug(model.title)}-{stamp}.pdf"

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            pages = self.render_to(model, str(path))
        except Exception as e:
            logger.error(f"Failed to render '{model.title}' to PDF: {str(e)}")
            return RenderResult(success=False, error=str(e))

        logger.info(f"Rendered {path} ({pages} pages)")
        return RenderResult(success=True, artifact_ref=str(path), page_count=pages)

    def render_to(self, model: ReportModel, target) -> int:
        """
        Build the PDF into a path or binary file object.

        Returns:
            Number of pages written
        """
        doc = SimpleDocTemplate(
            target,
            pagesize=self.pagesize,
            title=model.title,
            leftMargin=MARGIN,
            rightMargin=MARGIN,
            topMargin=MARGIN,
            bottomMargin=MARGIN,
        )
        page_numbers: List[int] = []

        def decorate(canvas, document):
            page_numbers.append(canvas.getPageNumber())
            canvas.saveState()
            canvas.setFont('Helvetica', 7)
            canvas.setFillColor(colors.grey)
            if model.classification:
                canvas.drawString(MARGIN, 0.5 * inch, model.classification)
            canvas.drawRightString(
                self.pagesize[0] - MARGIN, 0.5 * inch, f"Page {canvas.getPageNumber()}"
            )
            canvas.restoreState()

        doc.build(self._story(model), onFirstPage=decorate, onLaterPages=decorate)
        return max(page_numbers, default=0)

    @property
    def _frame_width(self) -> float:
        return self.pagesize[0] - 2 * MARGIN

    def _paragraph(self, text: Optional[str], style: str) -> Paragraph:
        return Paragraph(escape(text or ""), self.styles[style])

    def _story(self, model: ReportModel) -> list:
        summary = model.executive_summary
        story = [
            self._paragraph(model.title, 'title'),
            self._paragraph(model.subtitle, 'subtitle'),
        ]

        if summary.key_takeaway:
            story.append(Paragraph(f"<b>{escape(summary.key_takeaway)}</b>", self.styles['takeaway']))

        if summary.metrics:
            story.append(self._metrics_table(model))
            story.append(Spacer(1, 0.2 * inch))

        if summary.insights:
            story.append(self._paragraph("Key Insights", 'heading'))
            for insight in summary.insights:
                color = PRIORITY_COLORS[insight.priority]
                text = (
                    f"<font color='{color}'><b>{insight.priority.value.upper()}</b></font> "
                    f"{escape(insight.headline)}"
                )
                if insight.detail:
                    text += f"<br/>{escape(insight.detail)}"
                if insight.action:
                    text += f"<br/><i>Action: {escape(insight.action)}</i>"
                story.append(Paragraph(text, self.styles['body']))
                story.append(Spacer(1, 0.08 * inch))

        if summary.bottom_line:
            story.append(Spacer(1, 0.1 * inch))
            story.append(Paragraph(f"<b>Bottom line:</b> {escape(summary.bottom_line)}", self.styles['body']))

        for table in model.tables:
            story.extend(self._table_block(table))

        if model.appendix:
            story.append(PageBreak())
            story.append(self._paragraph("Appendix", 'heading'))
            for section in model.appendix:
                story.append(self._paragraph(section.title, 'heading'))
                story.append(self._paragraph(section.content, 'body'))
                if section.table is not None:
                    story.extend(self._table_block(section.table))
                if section.chart is not None and any(point.get("value") for point in section.chart.data):
                    story.append(Spacer(1, 0.1 * inch))
                    story.append(self._chart(section.chart))

        return story

    def _metrics_table(self, model: ReportModel) -> Table:
        cells = []
        for metric in model.executive_summary.metrics:
            text = f"<font size='7' color='grey'>{escape(metric.label.upper())}</font><br/>" \
                   f"<font size='13'><b>{escape(metric.value)}</b></font>"
            if metric.delta:
                color = DIRECTION_COLORS.get(metric.direction or "neutral", '#566573')
                text += f"<br/><font size='8' color='{color}'>{escape(metric.delta)}</font>"
            if metric.context:
                text += f"<br/><font size='7' color='grey'>{escape(metric.context)}</font>"
            cells.append(Paragraph(text, self.styles['metric']))

        width = self._frame_width / max(len(cells), 1)
        table = Table([cells], colWidths=[width] * len(cells))
        table.setStyle(TableStyle([
            ('BOX', (0, 0), (-1, -1), 0.5, colors.lightgrey),
            ('INNERGRID', (0, 0), (-1, -1), 0.5, colors.lightgrey),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        return table

    def _table_block(self, table: ReportTable) -> list:
        block = [self._paragraph(table.title, 'heading')]
        if not table.rows:
            block.append(self._paragraph("No data available.", 'small'))
            return block

        commands = [
            ('BACKGROUND', (0, 0), (-1, 0), NAVY),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('GRID', (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('ALIGN', (1, 1), (-1, -1), 'RIGHT'),
        ]
        header_style = ParagraphStyle('HeaderCell', parent=self.styles['cell'], textColor=colors.white)
        data = [[Paragraph(f"<b>{escape(header)}</b>", header_style) for header in table.headers]]

        for index, row in enumerate(table.rows, start=1):
            cells = list(row.cells) + [""] * (len(table.headers) - len(row.cells))
            if row.highlight in (RowHighlight.TOTAL, RowHighlight.HEADER):
                data.append([Paragraph(f"<b>{escape(cell)}</b>", self.styles['cell']) for cell in cells])
            else:
                data.append([self._paragraph(cell, 'cell') for cell in cells])
            if row.highlight is not None:
                commands.append(('BACKGROUND', (0, index), (-1, index), HIGHLIGHT_COLORS[row.highlight]))

        column = self._frame_width / len(table.headers)
        pdf_table = Table(data, colWidths=[column] * len(table.headers), repeatRows=1)
        pdf_table.setStyle(TableStyle(commands))
        block.append(pdf_table)
        if table.footnote:
            block.append(Spacer(1, 0.05 * inch))
            block.append(self._paragraph(table.footnote, 'small'))
        return block

    def _chart(self, chart: ChartSpec) -> Drawing:
        labels = [str(point.get("label", "")) for point in chart.data]
        values = [float(point.get("value", 0) or 0) for point in chart.data]
        drawing = Drawing(400, 200)

        if chart.type == ChartType.DONUT:
            donut = Doughnut()
            donut.x, donut.y, donut.width, donut.height = 125, 25, 150, 150
            donut.data = values
            donut.labels = labels
            drawing.add(donut)
            return drawing

        bars = HorizontalBarChart() if chart.type == ChartType.HORIZONTAL_BAR else VerticalBarChart()
        bars.x, bars.y, bars.width, bars.height = 60, 30, 320, 150
        bars.data = [values]
        bars.categoryAxis.categoryNames = labels
        bars.categoryAxis.labels.fontSize = 7
        bars.valueAxis.labels.fontSize = 7
        bars.valueAxis.valueMin = 0
        bars.bars[0].fillColor = NAVY
        drawing.add(bars)
        return drawing

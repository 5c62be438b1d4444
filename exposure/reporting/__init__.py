"""Executive report compilation, quality gate, rendering and export."""

from .compiler import ReportCompiler
from .exporter import Renderer, ReportExporter
from .pdf_renderer import PdfRenderer
from .quality import audit_report
from .xlsx_renderer import XlsxRenderer

__all__ = [
    'ReportCompiler',
    'Renderer',
    'ReportExporter',
    'PdfRenderer',
    'XlsxRenderer',
    'audit_report',
]

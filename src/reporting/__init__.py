"""Report rendering for finished coaching assessments."""

from __future__ import annotations

from .pdf import render_pdf, report_filename
from .shaping import shape_for_pdf
from .view import ReportView, build_report, render_text

__all__ = ["ReportView", "build_report", "render_pdf", "render_text", "report_filename", "shape_for_pdf"]

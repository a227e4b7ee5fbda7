"""Run reporting: result collection, exit codes and report files."""

from .generator import ReportFormat, ReportGenerator
from .models import RunReport, RunSummary
from .reporter import ResultReporter

__all__ = [
    "ReportFormat",
    "ReportGenerator",
    "RunReport",
    "RunSummary",
    "ResultReporter",
]

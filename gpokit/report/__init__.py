"""
Report generation for gpokit backup sets.
"""

from gpokit.report.html import generate_html_report

__all__ = ["generate_html_report"]

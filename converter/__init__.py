"""
Office document conversion service.

This package wraps a headless LibreOffice binary behind two HTTP endpoints:
single document to PDF, and spreadsheet to per-sheet HTML.
"""

__version__ = "1.0.0"

"""
Conversion configuration for the converter service.

This module defines the accepted upload formats, the export filters handed
to the headless converter for each document category, and the environment
driven service settings.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple


# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3001

# Converter defaults
DEFAULT_SOFFICE_BINARY = "soffice"
DEFAULT_TMP_DIR = "/tmp/converter-service"
DEFAULT_PDF_TIMEOUT = 60.0
DEFAULT_HTML_TIMEOUT = 90.0
DEFAULT_MAX_CONCURRENT = 4

# Cache and upload limits
DEFAULT_CACHE_SIZE = 20
DEFAULT_MAX_UPLOAD_MB = 25


class DocumentCategory(Enum):
    """Document families, each mapped to a converter application."""
    WORD_PROCESSING = "word-processing"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    PDF = "pdf"


# Extension -> category for every upload accepted by /convert
EXTENSION_CATEGORIES: Dict[str, DocumentCategory] = {
    ".doc": DocumentCategory.WORD_PROCESSING,
    ".docx": DocumentCategory.WORD_PROCESSING,
    ".odt": DocumentCategory.WORD_PROCESSING,
    ".rtf": DocumentCategory.WORD_PROCESSING,
    ".txt": DocumentCategory.WORD_PROCESSING,
    ".ppt": DocumentCategory.PRESENTATION,
    ".pptx": DocumentCategory.PRESENTATION,
    ".odp": DocumentCategory.PRESENTATION,
    ".xls": DocumentCategory.SPREADSHEET,
    ".xlsx": DocumentCategory.SPREADSHEET,
    ".ods": DocumentCategory.SPREADSHEET,
    ".pdf": DocumentCategory.PDF,
}

ALLOWED_EXTENSIONS = frozenset(EXTENSION_CATEGORIES)

# /convert-excel accepts spreadsheets only
SPREADSHEET_EXTENSIONS = frozenset(
    ext for ext, category in EXTENSION_CATEGORIES.items()
    if category is DocumentCategory.SPREADSHEET
)

# Spreadsheet formats openpyxl can load and save back in the same book type
OOXML_WORKBOOK_EXTENSIONS = frozenset({".xlsx"})

# Category -> (export filter, FilterData options)
PDF_EXPORT_FILTERS: Dict[DocumentCategory, Tuple[str, Optional[Dict[str, object]]]] = {
    DocumentCategory.WORD_PROCESSING: ("writer_pdf_Export", None),
    DocumentCategory.SPREADSHEET: ("calc_pdf_Export", {
        "SinglePageSheets": True,
        "ScaleToPagesX": 1,
        "ScaleToPagesY": 1,
    }),
    DocumentCategory.PRESENTATION: ("impress_pdf_Export", {
        "ExportNotesPages": False,
        "ExportOnlyNotesPages": False,
    }),
}

# HTML export filters for spreadsheets, tried in order
HTML_EXPORT_FILTERS: List[Tuple[str, Optional[Dict[str, object]]]] = [
    ("XHTML Calc File", None),
    ("HTML (StarCalc)", None),
]

# Used to bring legacy and OpenDocument workbooks into a format openpyxl reads
XLSX_EXPORT_FILTER = "Calc MS Excel 2007 XML"

# Workspace sub-roots under the scratch directory
WORKSPACE_ROOTS = {
    "jobs": "jobs",
    "sheets": "sheets",
    "profiles": "profiles",
}


def get_category(extension: str) -> Optional[DocumentCategory]:
    """Look up the document category for an extension like '.docx'."""
    return EXTENSION_CATEGORIES.get(extension.lower())


class ServiceSettings:
    """Runtime settings for the converter service."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        soffice_binary: str = DEFAULT_SOFFICE_BINARY,
        tmp_dir: str = DEFAULT_TMP_DIR,
        pdf_timeout: float = DEFAULT_PDF_TIMEOUT,
        html_timeout: float = DEFAULT_HTML_TIMEOUT,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        cache_size: int = DEFAULT_CACHE_SIZE,
        max_upload_mb: int = DEFAULT_MAX_UPLOAD_MB
    ):
        """
        Initialize service settings.

        Args:
            host: Interface the HTTP server binds to
            port: Port the HTTP server listens on
            soffice_binary: Name or path of the headless converter binary
            tmp_dir: Scratch root for per-request workspaces
            pdf_timeout: Seconds before a PDF export subprocess is killed
            html_timeout: Seconds before an HTML export subprocess is killed
            max_concurrent: Converter subprocesses allowed to run at once
            cache_size: Maximum entries kept by each result cache
            max_upload_mb: Largest accepted upload in megabytes
        """
        self.host = host
        self.port = port
        self.soffice_binary = soffice_binary
        self.tmp_dir = Path(tmp_dir)
        self.pdf_timeout = pdf_timeout
        self.html_timeout = html_timeout
        self.max_concurrent = max_concurrent
        self.cache_size = cache_size
        self.max_upload_mb = max_upload_mb

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> 'ServiceSettings':
        """Create settings from environment variables."""
        return cls(
            host=os.getenv('HOST', DEFAULT_HOST),
            port=int(os.getenv('PORT', str(DEFAULT_PORT))),
            soffice_binary=os.getenv('CONVERTER_SOFFICE_BINARY', DEFAULT_SOFFICE_BINARY),
            tmp_dir=os.getenv('CONVERTER_TMP_DIR', DEFAULT_TMP_DIR),
            pdf_timeout=float(os.getenv('CONVERTER_PDF_TIMEOUT', str(DEFAULT_PDF_TIMEOUT))),
            html_timeout=float(os.getenv('CONVERTER_HTML_TIMEOUT', str(DEFAULT_HTML_TIMEOUT))),
            max_concurrent=int(os.getenv('CONVERTER_MAX_CONCURRENT', str(DEFAULT_MAX_CONCURRENT))),
            cache_size=int(os.getenv('CONVERTER_CACHE_SIZE', str(DEFAULT_CACHE_SIZE))),
            max_upload_mb=int(os.getenv('CONVERTER_MAX_UPLOAD_MB', str(DEFAULT_MAX_UPLOAD_MB)))
        )

    def __repr__(self):
        return (
            f"ServiceSettings(port={self.port}, soffice={self.soffice_binary}, "
            f"tmp_dir={self.tmp_dir}, max_concurrent={self.max_concurrent})"
        )

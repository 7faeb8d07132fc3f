"""
Utility functions for spreadsheet conversion processing.

This module prepares workbooks before they are handed to the converter:
- normalizing print layout so each sheet exports to one landscape PDF page
- splitting a workbook into single-sheet workbooks for HTML export
- listing sheet names and assigning unique display names
"""

import zipfile
from io import BytesIO
from typing import List, Optional, Sequence, Tuple

import openpyxl
import xlrd
from openpyxl.packaging.manifest import Manifest
from openpyxl.packaging.workbook import WorkbookPackage
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.header_footer import HeaderFooter
from openpyxl.worksheet.page import PageMargins, PrintOptions
from openpyxl.worksheet.pagebreak import ColBreak, RowBreak
from openpyxl.worksheet.properties import PageSetupProperties
from openpyxl.xml.constants import ARC_CONTENT_TYPES, ARC_WORKBOOK, XLSM, XLSX, XLTM, XLTX
from openpyxl.xml.functions import fromstring

from ..config import OOXML_WORKBOOK_EXTENSIONS
from .logging_config import get_logger

logger = get_logger(__name__)

# Workbook names that pin a print range and override fit-to-page scaling
PRINT_NAME_MARKERS = ("print_area", "print_titles")

WORKBOOK_CONTENT_TYPES = (XLSX, XLSM, XLTX, XLTM)


def is_print_defined_name(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in PRINT_NAME_MARKERS)


def _load_workbook(file_content: bytes) -> Workbook:
    return openpyxl.load_workbook(BytesIO(file_content))


def _save_workbook(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _remove_print_names(workbook: Workbook) -> int:
    """Drop workbook and sheet scoped names for print areas and titles."""
    removed = 0
    for name in list(workbook.defined_names):
        if is_print_defined_name(name):
            del workbook.defined_names[name]
            removed += 1

    for worksheet in workbook.worksheets:
        local_names = getattr(worksheet, "defined_names", None)
        if not local_names:
            continue
        for name in list(local_names):
            if is_print_defined_name(name):
                del local_names[name]
                removed += 1
    return removed


def _reset_page_layout(worksheet) -> None:
    """Force fit-to-one-page landscape and clear print overrides."""
    page_setup = worksheet.page_setup
    page_setup.scale = None
    page_setup.fitToWidth = 1
    page_setup.fitToHeight = 1
    page_setup.orientation = "landscape"

    if worksheet.sheet_properties.pageSetUpPr is None:
        worksheet.sheet_properties.pageSetUpPr = PageSetupProperties(fitToPage=True)
    else:
        worksheet.sheet_properties.pageSetUpPr.fitToPage = True

    worksheet.HeaderFooter = HeaderFooter()
    worksheet.page_margins = PageMargins()
    worksheet.print_options = PrintOptions()
    worksheet.row_breaks = RowBreak()
    worksheet.col_breaks = ColBreak()

    # openpyxl keeps print ranges on the sheet itself; the public setters
    # do not accept None in every release
    worksheet._print_area = None
    worksheet._print_rows = None
    worksheet._print_cols = None


def normalize_workbook(file_content: bytes, extension: str) -> bytes:
    """
    Rewrite a workbook so every sheet converts to a single PDF page.

    Only OOXML workbooks are rewritten; any other input, and any workbook
    that fails to parse or save, is returned unchanged.

    Args:
        file_content: Raw workbook bytes
        extension: Original file extension, e.g. '.xlsx'

    Returns:
        Normalized bytes, or file_content itself when normalization does not
        apply or fails
    """
    ext = extension.lower()
    if ext not in OOXML_WORKBOOK_EXTENSIONS:
        logger.debug(f"Skipping print-layout normalization for {ext}")
        return file_content

    try:
        workbook = _load_workbook(file_content)
        removed = _remove_print_names(workbook)
        for worksheet in workbook.worksheets:
            _reset_page_layout(worksheet)
        normalized = _save_workbook(workbook)
    except Exception as e:
        logger.warning(f"Spreadsheet normalization failed, converting original bytes: {e}")
        return file_content

    logger.debug(f"Normalized {len(workbook.worksheets)} sheet(s), removed {removed} print name(s)")
    return normalized


def list_sheet_names(file_content: bytes, extension: str) -> Optional[List[str]]:
    """
    Read sheet names without converting.

    Returns None for formats that cannot be read directly (for example
    '.ods'). Raises the parser's exception for corrupt input.
    """
    ext = extension.lower()
    if ext in OOXML_WORKBOOK_EXTENSIONS:
        workbook = openpyxl.load_workbook(BytesIO(file_content), read_only=True)
        try:
            return [worksheet.title for worksheet in workbook.worksheets]
        finally:
            workbook.close()
    if ext == ".xls":
        book = xlrd.open_workbook(file_contents=file_content, on_demand=True)
        try:
            return list(book.sheet_names())
        finally:
            book.release_resources()
    return None


def _workbook_part_name(archive: zipfile.ZipFile) -> str:
    """Locate the workbook part through the package content types."""
    try:
        manifest = Manifest.from_tree(fromstring(archive.read(ARC_CONTENT_TYPES)))
    except KeyError:
        return ARC_WORKBOOK
    for override in manifest.Override:
        if override.ContentType in WORKBOOK_CONTENT_TYPES:
            return override.PartName.lstrip("/")
    return ARC_WORKBOOK


def read_sheet_names(file_content: bytes) -> List[str]:
    """
    Sheet names exactly as stored in the workbook part, in workbook order.

    openpyxl renames blank and repeated titles when it loads a workbook;
    these are the names before that happens. Chartsheets are included.
    """
    with zipfile.ZipFile(BytesIO(file_content)) as archive:
        package = WorkbookPackage.from_tree(fromstring(archive.read(_workbook_part_name(archive))))
    return [sheet.name or "" for sheet in package.sheets]


def split_workbook(file_content: bytes) -> List[Tuple[str, bytes]]:
    """
    Split a workbook into one single-sheet workbook per worksheet.

    Each part is loaded from the original bytes so styles, merged cells and
    images of the kept sheet are preserved. Sheets are matched by position,
    so blank and repeated names are reported as stored.

    Returns:
        List of (stored sheet name, workbook bytes) in workbook order
    """
    workbook = _load_workbook(file_content)
    stored_names = read_sheet_names(file_content)
    if len(stored_names) == len(workbook.sheetnames):
        # sheetnames also lists chartsheets, matching the stored order
        positions = [workbook.sheetnames.index(worksheet.title) for worksheet in workbook.worksheets]
        names = [stored_names[position] for position in positions]
    else:
        logger.warning("Stored sheet names do not line up with loaded sheets, using loaded titles")
        names = [worksheet.title for worksheet in workbook.worksheets]

    parts = []
    for index, name in enumerate(names):
        part = _load_workbook(file_content)
        keep = part.worksheets[index]
        for other in list(part.worksheets) + list(part.chartsheets):
            if other is not keep:
                part.remove(other)
        part.active = 0
        parts.append((name, _save_workbook(part)))
        logger.debug(f"Isolated sheet {index + 1}/{len(names)}: {name!r}")
    return parts


def assign_display_names(sheet_names: Sequence[Optional[str]]) -> List[str]:
    """
    Unique display names for sheets.

    Blank names become 'Sheet N' (1-indexed position); repeated names get
    ' (2)', ' (3)', ... appended until unique.
    """
    used = set()
    display_names = []
    for position, name in enumerate(sheet_names, start=1):
        base = name if name and name.strip() else f"Sheet {position}"
        candidate = base
        suffix = 2
        while candidate in used:
            candidate = f"{base} ({suffix})"
            suffix += 1
        used.add(candidate)
        display_names.append(candidate)
    return display_names

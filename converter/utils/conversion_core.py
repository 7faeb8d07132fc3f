"""
Core conversion pipeline for the converter endpoints.

This module holds the request orchestration that the router delegates to:
validation, cache lookup, workspace handling, converter invocation and
output retrieval for both PDF and per-sheet HTML conversion.
"""

import json
from pathlib import Path, PurePath
from typing import Collection, Dict, Iterable, Optional

from fastapi.concurrency import run_in_threadpool

from ..config import (
    ALLOWED_EXTENSIONS,
    OOXML_WORKBOOK_EXTENSIONS,
    PDF_EXPORT_FILTERS,
    SPREADSHEET_EXTENSIONS,
    XLSX_EXPORT_FILTER,
    DocumentCategory,
    ServiceSettings,
    get_category,
)
from .conversion_spreadsheets import (
    assign_display_names,
    list_sheet_names,
    normalize_workbook,
    split_workbook,
)
from .error_handling import ConversionError, ErrorCode, RequestValidationFailed
from .html_utils import inline_local_assets
from .logging_config import get_logger
from .result_cache import ResultCache, content_hash
from .soffice_runner import FilterSpec, SofficeRunner
from .workspace_manager import WorkspaceManager

logger = get_logger(__name__)


class ConversionRequest:
    """An uploaded file, reduced to a safe base name."""

    def __init__(self, file_content: bytes, filename: Optional[str]):
        self.file_content = file_content
        # Windows clients may send backslash separated paths
        name = PurePath((filename or "").replace("\\", "/")).name
        self.filename = name or "upload"
        self.extension = PurePath(self.filename).suffix.lower()
        self._hash: Optional[str] = None

    @property
    def stem(self) -> str:
        return PurePath(self.filename).stem or "document"

    @property
    def content_hash(self) -> str:
        if self._hash is None:
            self._hash = content_hash(self.file_content)
        return self._hash

    def __repr__(self):
        return f"ConversionRequest(filename={self.filename!r}, size={len(self.file_content)})"


class PdfResult:
    """Converted PDF bytes and the name to present them under."""

    def __init__(self, data: bytes, filename: str, cached: bool = False):
        self.data = data
        self.filename = filename
        self.cached = cached


def locate_output(directory: Path, stem: str, suffixes: Iterable[str],
                  exclude: Optional[Path] = None, missing_message: str = "Converted file not found") -> Path:
    """
    Find the converter's output file in directory.

    Prefers '<stem><first suffix>', then any file with one of the suffixes
    (sorted by name). exclude is never returned.
    """
    suffixes = [s.lower() for s in suffixes]
    expected = directory / f"{stem}{suffixes[0]}"
    if expected.is_file() and expected != exclude:
        return expected

    for entry in sorted(directory.iterdir()):
        if entry == exclude or not entry.is_file():
            continue
        if entry.suffix.lower() in suffixes:
            logger.debug(f"Using fallback output {entry.name} for {stem}")
            return entry

    raise ConversionError(missing_message, ErrorCode.OUTPUT_NOT_FOUND)


class DocumentConverter:
    """
    Orchestrates uploads through the headless converter.

    Caches, workspace managers and the runner are injected so they can be
    replaced in tests or shared between app instances.
    """

    def __init__(
        self,
        runner: SofficeRunner,
        jobs: WorkspaceManager,
        sheet_jobs: WorkspaceManager,
        pdf_cache: ResultCache,
        sheet_cache: ResultCache,
        max_upload_bytes: int
    ):
        self.runner = runner
        self.jobs = jobs
        self.sheet_jobs = sheet_jobs
        self.pdf_cache = pdf_cache
        self.sheet_cache = sheet_cache
        self.max_upload_bytes = max_upload_bytes

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> 'DocumentConverter':
        """Build a converter and its collaborators from service settings."""
        runner = SofficeRunner(
            binary=settings.soffice_binary,
            max_concurrent=settings.max_concurrent,
            pdf_timeout=settings.pdf_timeout,
            html_timeout=settings.html_timeout,
            profiles=WorkspaceManager(settings.tmp_dir, "profiles"),
        )
        return cls(
            runner=runner,
            jobs=WorkspaceManager(settings.tmp_dir, "jobs"),
            sheet_jobs=WorkspaceManager(settings.tmp_dir, "sheets"),
            pdf_cache=ResultCache(settings.cache_size, name="pdf"),
            sheet_cache=ResultCache(settings.cache_size, name="sheets"),
            max_upload_bytes=settings.max_upload_bytes,
        )

    # ===== VALIDATION =====

    def _validate(self, request: ConversionRequest, allowed: Collection[str], message: str) -> None:
        if len(request.file_content) > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise RequestValidationFailed(
                f"File too large. Maximum size is {limit_mb}MB.",
                ErrorCode.FILE_TOO_LARGE,
            )
        if request.extension not in allowed:
            raise RequestValidationFailed(message, ErrorCode.UNSUPPORTED_FORMAT)

    # ===== PDF =====

    async def convert_to_pdf(self, request: ConversionRequest) -> PdfResult:
        """
        Convert an uploaded document to PDF.

        Raises:
            RequestValidationFailed: oversized upload or extension not allowed
            ConversionError: the converter failed or produced no PDF
        """
        self._validate(
            request,
            ALLOWED_EXTENSIONS,
            "Unsupported file type. Please upload a document, spreadsheet, or presentation.",
        )
        output_name = f"{request.stem}.pdf"
        key = request.content_hash

        cached = self.pdf_cache.get(key)
        if cached is not None:
            logger.info(f"Serving cached PDF for {request.filename}")
            return PdfResult(cached, output_name, cached=True)

        category = get_category(request.extension)
        if category is DocumentCategory.PDF:
            self.pdf_cache.put(key, request.file_content)
            return PdfResult(request.file_content, output_name)

        async with self.jobs.workspace() as job_dir:
            input_path = job_dir / request.filename
            input_path.write_bytes(request.file_content)
            if category is DocumentCategory.SPREADSHEET:
                input_path = await self._normalized_spreadsheet(request, input_path)

            filter_name, options = PDF_EXPORT_FILTERS[category]
            await self.runner.convert(input_path, job_dir, FilterSpec("pdf", filter_name, options))

            pdf_path = locate_output(job_dir, request.stem, (".pdf",), exclude=input_path,
                                     missing_message="Converted PDF not found")
            pdf_bytes = pdf_path.read_bytes()

        self.pdf_cache.put(key, pdf_bytes)
        logger.info(f"Converted {request.filename} to PDF ({len(pdf_bytes)} bytes)")
        return PdfResult(pdf_bytes, output_name)

    async def _normalized_spreadsheet(self, request: ConversionRequest, input_path: Path) -> Path:
        """
        Return the workbook to export, with print layout normalized.

        Non-OOXML workbooks are first converted to .xlsx by the converter.
        Any failure along the way falls back to the original upload.
        """
        workbook_path = input_path
        workbook_bytes = request.file_content
        if request.extension not in OOXML_WORKBOOK_EXTENSIONS:
            try:
                workbook_path = await self._convert_to_xlsx(input_path, request.stem)
            except ConversionError as e:
                logger.warning(f"Could not convert {request.filename} to .xlsx for normalization: {e.message}")
                return input_path
            workbook_bytes = workbook_path.read_bytes()

        normalized = await run_in_threadpool(normalize_workbook, workbook_bytes, ".xlsx")
        if normalized is workbook_bytes:
            return input_path

        workbook_path.write_bytes(normalized)
        return workbook_path

    async def _convert_to_xlsx(self, input_path: Path, stem: str) -> Path:
        """Convert a workbook to .xlsx in an 'xlsx' directory beside it."""
        output_dir = input_path.parent / "xlsx"
        output_dir.mkdir(exist_ok=True)
        await self.runner.convert(input_path, output_dir, FilterSpec("xlsx", XLSX_EXPORT_FILTER))
        return locate_output(output_dir, stem, (".xlsx",),
                             missing_message="Converted workbook not found")

    # ===== SPREADSHEET TO HTML =====

    async def convert_workbook_to_html(self, request: ConversionRequest) -> Dict[str, str]:
        """
        Convert every sheet of a workbook to a self-contained HTML string.

        Returns:
            Mapping of unique display name to HTML, in workbook order

        Raises:
            RequestValidationFailed: not a spreadsheet, unreadable, or no sheets
            ConversionError: any sheet failed to convert
        """
        self._validate(
            request,
            SPREADSHEET_EXTENSIONS,
            "Unsupported file type. Please upload an Excel or OpenDocument spreadsheet.",
        )
        key = request.content_hash

        cached = self.sheet_cache.get(key)
        if cached is not None:
            logger.info(f"Serving cached sheets for {request.filename}")
            return json.loads(cached.decode("utf-8"))

        try:
            sheet_names = await run_in_threadpool(list_sheet_names, request.file_content, request.extension)
        except Exception as e:
            raise RequestValidationFailed(f"Unable to read workbook: {e}", ErrorCode.INVALID_FILE) from e
        if sheet_names is not None and not sheet_names:
            raise RequestValidationFailed("Workbook contains no sheets", ErrorCode.EMPTY_WORKBOOK)

        async with self.jobs.workspace() as job_dir:
            workbook_bytes = await self._as_xlsx(request, job_dir)
            parts = await run_in_threadpool(split_workbook, workbook_bytes)
            if not parts:
                raise RequestValidationFailed("Workbook contains no sheets", ErrorCode.EMPTY_WORKBOOK)

            display_names = assign_display_names([name for name, _ in parts])
            sheets: Dict[str, str] = {}
            for index, (display_name, (_, part)) in enumerate(zip(display_names, parts), start=1):
                sheets[display_name] = await self.render_sheet_html(part, index)

        self.sheet_cache.put(key, json.dumps(sheets).encode("utf-8"))
        logger.info(f"Converted {len(sheets)} sheet(s) of {request.filename} to HTML")
        return sheets

    async def _as_xlsx(self, request: ConversionRequest, job_dir: Path) -> bytes:
        """Return workbook bytes openpyxl can load, converting with soffice if needed."""
        if request.extension in OOXML_WORKBOOK_EXTENSIONS:
            return request.file_content

        input_path = job_dir / request.filename
        input_path.write_bytes(request.file_content)
        xlsx_path = await self._convert_to_xlsx(input_path, request.stem)
        return xlsx_path.read_bytes()

    async def render_sheet_html(self, workbook_bytes: bytes, index: int) -> str:
        """Export one single-sheet workbook to HTML with assets inlined."""
        async with self.sheet_jobs.workspace() as sheet_dir:
            input_path = sheet_dir / f"sheet{index}.xlsx"
            input_path.write_bytes(workbook_bytes)

            await self.runner.export_html(input_path, sheet_dir)

            html_path = locate_output(sheet_dir, input_path.stem, (".html", ".htm"),
                                      missing_message="Converted HTML not found")
            html = html_path.read_text(encoding="utf-8", errors="replace")
            return inline_local_assets(html, sheet_dir)

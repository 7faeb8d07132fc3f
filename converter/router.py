"""
Conversion router for the /convert endpoints.

POST /convert turns an office document into a PDF. POST /convert-excel turns
each sheet of a spreadsheet into a self-contained HTML string.
"""

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from .config import ALLOWED_EXTENSIONS, SPREADSHEET_EXTENSIONS
from .utils.conversion_core import ConversionRequest, DocumentConverter
from .utils.error_handling import (
    ErrorCode,
    RequestValidationFailed,
    create_json_error_response,
    create_text_error_response,
)
from .utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["conversions"])


def get_converter(request: Request) -> DocumentConverter:
    return request.app.state.converter


def content_disposition(filename: str) -> str:
    """Inline disposition header, with an RFC 5987 name for non-latin-1 filenames."""
    safe_name = filename.replace('"', "").replace("\r", "").replace("\n", "")
    try:
        safe_name.encode("latin-1")
    except UnicodeEncodeError:
        fallback = safe_name.encode("ascii", errors="replace").decode("ascii").replace("?", "_")
        return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(safe_name)}"
    return f'inline; filename="{safe_name}"'


async def _read_upload(file: Optional[UploadFile]) -> ConversionRequest:
    if file is None or not file.filename:
        raise RequestValidationFailed("No file provided", ErrorCode.MISSING_FILE)
    try:
        content = await file.read()
    finally:
        await file.close()
    return ConversionRequest(content, file.filename)


#-- Document to PDF
#-------------------------------------------------------------------------------
@router.post("/convert")
async def convert_to_pdf(request: Request, file: Optional[UploadFile] = File(None)):
    """Convert an uploaded document, spreadsheet or presentation to PDF."""
    converter = get_converter(request)
    try:
        upload = await _read_upload(file)
        result = await converter.convert_to_pdf(upload)
    except RequestValidationFailed as e:
        return create_text_error_response(e)
    except Exception as e:
        logger.exception("[convert] failed")
        return create_text_error_response(e, status_code=500)

    return Response(
        content=result.data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": content_disposition(result.filename),
            "X-Cache": "HIT" if result.cached else "MISS",
        },
    )


#-- Spreadsheet to per-sheet HTML
#-------------------------------------------------------------------------------
@router.post("/convert-excel")
async def convert_excel_to_html(request: Request, file: Optional[UploadFile] = File(None)):
    """Convert every sheet of an uploaded spreadsheet to HTML."""
    converter = get_converter(request)
    try:
        upload = await _read_upload(file)
        sheets = await converter.convert_workbook_to_html(upload)
    except RequestValidationFailed as e:
        return create_json_error_response(e)
    except Exception as e:
        logger.exception("[convert-excel] failed")
        return create_json_error_response(e, status_code=500)

    return JSONResponse(content={"sheets": sheets})


#-- Utility endpoints
#-------------------------------------------------------------------------------
@router.get("/supported")
async def get_supported_formats():
    """List the upload extensions each route accepts."""
    return JSONResponse(content={
        "convert": sorted(ALLOWED_EXTENSIONS),
        "convert-excel": sorted(SPREADSHEET_EXTENSIONS),
    })

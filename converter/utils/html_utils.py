"""
HTML post-processing for converter HTML exports.

LibreOffice writes images next to the exported HTML file. These helpers
embed those images as base64 data URIs so a single HTML string can be
returned to the browser.
"""

import base64
import os
import re
from pathlib import Path
from typing import Dict, Optional, Union

from .logging_config import get_logger

logger = get_logger(__name__)

SRC_ATTRIBUTE_RE = re.compile(r'src="([^"]*)"')

# References that already point somewhere other than the export directory
ABSOLUTE_PREFIXES = ("data:", "http:", "https:", "file:", "//")

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_image_mime(path: Union[str, Path]) -> str:
    return IMAGE_MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


def is_absolute_reference(src: str) -> bool:
    return src.lower().startswith(ABSOLUTE_PREFIXES)


def resolve_local_asset(src: str, base_dir: Union[str, Path]) -> Optional[Path]:
    """
    Resolve a relative src against base_dir.

    Returns None when the path escapes base_dir (after symlinks and '..'
    are resolved).
    """
    base = os.path.realpath(base_dir)
    candidate = os.path.realpath(os.path.join(base, src))
    if os.path.commonpath([base, candidate]) != base or candidate == base:
        return None
    return Path(candidate)


def build_data_uri(path: Union[str, Path]) -> str:
    encoded = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{guess_image_mime(path)};base64,{encoded}"


def inline_local_assets(html_content: str, base_dir: Union[str, Path]) -> str:
    """
    Replace every local src="..." reference with a base64 data URI.

    Args:
        html_content: HTML produced by the converter
        base_dir: Directory the HTML was exported into

    Returns:
        HTML with local assets embedded. Remote, data and file references,
        paths outside base_dir and unreadable files are left unchanged.
    """
    if not html_content:
        return html_content or ""

    replacements: Dict[str, str] = {}
    for src in SRC_ATTRIBUTE_RE.findall(html_content):
        if src in replacements or not src or is_absolute_reference(src):
            continue

        asset_path = resolve_local_asset(src, base_dir)
        if asset_path is None:
            logger.warning(f"Skipping asset outside export directory: {src}")
            continue

        try:
            replacements[src] = build_data_uri(asset_path)
        except OSError as e:
            logger.debug(f"Skipping unreadable asset {src}: {e}")

    for src, data_uri in replacements.items():
        html_content = html_content.replace(f'src="{src}"', f'src="{data_uri}"')

    if replacements:
        logger.debug(f"Inlined {len(replacements)} asset(s) from {base_dir}")
    return html_content

"""
Test doubles and builders shared by the converter-service tests.
"""

import re
import stat
import zipfile
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

import openpyxl

from converter.utils.error_handling import ConversionError
from converter.utils.soffice_runner import FilterSpec
from converter.utils.workspace_manager import WorkspaceManager


# ===== FAKE CONVERTER =====

class FakeRunner:
    """
    Stand-in for SofficeRunner that writes plausible output files.

    PDF exports write '<stem>.pdf', XLSX exports write a two-sheet workbook,
    HTML exports write '<stem>.html' referencing a PNG next to it.
    """

    binary = "fake-soffice"
    is_available = True

    def __init__(self, fail: bool = False, write_output: bool = True):
        self.fail = fail
        self.fail_targets: Set[str] = set()
        self.write_output = write_output
        self.calls: List[FilterSpec] = []
        self.inputs: List[Tuple[str, bytes]] = []
        self.html_calls: List[Path] = []

    async def convert(self, input_path, output_dir, spec, timeout=None,
                      profile_dir=None, no_lock_check=False):
        input_path, output_dir = Path(input_path), Path(output_dir)
        self.calls.append(spec)
        self.inputs.append((input_path.name, input_path.read_bytes()))
        if self.fail or spec.target in self.fail_targets:
            raise ConversionError("Converter exited with code 1: simulated failure")
        if not self.write_output:
            return

        if spec.target == "pdf":
            (output_dir / f"{input_path.stem}.pdf").write_bytes(
                b"%PDF-1.4 fake " + input_path.read_bytes()[:16]
            )
        elif spec.target == "xlsx":
            (output_dir / f"{input_path.stem}.xlsx").write_bytes(
                make_workbook(["Converted", "Second"])
            )

    async def export_html(self, input_path, output_dir):
        input_path, output_dir = Path(input_path), Path(output_dir)
        self.html_calls.append(input_path)
        if self.fail:
            raise ConversionError("Converter exited with code 1: simulated failure")

        (output_dir / f"{input_path.stem}_img.png").write_bytes(PNG_BYTES)
        (output_dir / f"{input_path.stem}.html").write_text(
            f'<html><body><p>{input_path.stem}</p>'
            f'<img src="{input_path.stem}_img.png"></body></html>',
            encoding="utf-8",
        )
        return FilterSpec("html", "XHTML Calc File")


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


# ===== HELPERS =====

def make_workbook(titles: Sequence[str], values: Optional[Sequence[str]] = None) -> bytes:
    """Build an in-memory .xlsx with one sheet per title."""
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for index, title in enumerate(titles):
        worksheet = workbook.create_sheet(title)
        worksheet["A1"] = values[index] if values else f"value-{index}"
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script used as a fake soffice binary."""
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def leftover_dirs(manager: WorkspaceManager) -> List[Path]:
    if not manager.root.exists():
        return []
    return list(manager.root.iterdir())




def with_stored_sheet_names(workbook_bytes: bytes, names: Sequence[str]) -> bytes:
    """
    Rewrite the sheet names stored in xl/workbook.xml, in order.

    Lets tests produce blank or repeated names, which openpyxl refuses to
    write itself.
    """
    stored = iter(names)
    source = BytesIO(workbook_bytes)
    target = BytesIO()
    with zipfile.ZipFile(source) as archive, zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as output:
        for item in archive.infolist():
            data = archive.read(item.filename)
            if item.filename == "xl/workbook.xml":
                text = re.sub(r'(<sheet\b[^>]*?\bname=")[^"]*(")',
                              lambda match: f"{match.group(1)}{next(stored)}{match.group(2)}",
                              data.decode("utf-8"))
                data = text.encode("utf-8")
            output.writestr(item, data)
    return target.getvalue()

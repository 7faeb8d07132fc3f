"""
Unit tests for the headless converter invocation.

Subprocess tests use small shell scripts standing in for soffice.
"""

import asyncio
import time

import pytest

from converter.utils.error_handling import ConversionError, ErrorCode
from converter.utils.soffice_runner import (
    FilterSpec,
    SofficeRunner,
    build_command,
    format_filter_data,
    format_filter_value,
)
from converter.utils.workspace_manager import WorkspaceManager
from tests.helpers import write_script

# Writes its arguments and a PDF into the directory following --outdir
SUCCESS_SCRIPT = """
outdir=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "--outdir" ]; then outdir="$arg"; fi
  prev="$arg"
done
printf '%s\\n' "$@" > "$outdir/args.txt"
printf '%%PDF-1.4' > "$outdir/out.pdf"
"""


class TestFilterData:

    def test_calc_filter_string(self):
        spec = FilterSpec("pdf", "calc_pdf_Export", {"SinglePageSheets": True, "ScaleToPagesX": 1})
        assert spec.argument == "pdf:calc_pdf_Export:FilterData={'SinglePageSheets':true,'ScaleToPagesX':1}"

    def test_filter_without_options(self):
        assert FilterSpec("pdf", "writer_pdf_Export").argument == "pdf:writer_pdf_Export"
        assert FilterSpec("html").argument == "html"

    def test_value_formatting(self):
        assert format_filter_value(False) == "false"
        assert format_filter_value(2) == "2"
        assert format_filter_value(0.5) == "0.5"
        assert format_filter_value("All") == "'All'"

    def test_key_order_is_preserved(self):
        assert format_filter_data({"B": 1, "A": 2}) == "{'B':1,'A':2}"

    def test_single_quote_rejected(self):
        with pytest.raises(ValueError):
            format_filter_value("it's")

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            format_filter_value([1, 2])

    def test_specs_compare_by_argument(self):
        assert FilterSpec("pdf", "writer_pdf_Export") == FilterSpec("pdf", "writer_pdf_Export")
        assert FilterSpec("pdf") != FilterSpec("html")


class TestBuildCommand:

    def test_basic_command(self, tmp_path):
        cmd = build_command("soffice", tmp_path / "in.docx", tmp_path, FilterSpec("pdf", "writer_pdf_Export"))
        assert cmd == [
            "soffice", "--headless", "--nologo", "--nofirststartwizard",
            "--convert-to", "pdf:writer_pdf_Export",
            str(tmp_path / "in.docx"), "--outdir", str(tmp_path),
        ]

    def test_profile_and_lock_flags(self, tmp_path):
        profile = tmp_path / "profile"
        cmd = build_command("soffice", tmp_path / "in.xlsx", tmp_path, FilterSpec("html"),
                            profile_dir=profile, no_lock_check=True)
        assert cmd[1] == f"-env:UserInstallation={profile.resolve().as_uri()}"
        assert "--nolockcheck" in cmd
        assert cmd.index("--nolockcheck") < cmd.index("--convert-to")


class TestSofficeRunner:

    @pytest.mark.asyncio
    async def test_successful_conversion(self, tmp_path, posix_only):
        binary = write_script(tmp_path / "soffice", SUCCESS_SCRIPT)
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        runner = SofficeRunner(str(binary), profiles=WorkspaceManager(tmp_path, "profiles"))

        await runner.convert(tmp_path / "in.docx", out_dir, FilterSpec("pdf", "writer_pdf_Export"))

        args = (out_dir / "args.txt").read_text().splitlines()
        assert args[:4] == ["--headless", "--nologo", "--nofirststartwizard", "--convert-to"]
        assert "pdf:writer_pdf_Export" in args
        assert (out_dir / "out.pdf").read_bytes().startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, tmp_path, posix_only):
        binary = write_script(tmp_path / "soffice", "echo 'source file could not be loaded' >&2\nexit 3\n")
        runner = SofficeRunner(str(binary))

        with pytest.raises(ConversionError) as exc_info:
            await runner.convert(tmp_path / "in.docx", tmp_path, FilterSpec("pdf"))

        assert exc_info.value.message == "Converter exited with code 3: source file could not be loaded"
        assert exc_info.value.error_code == ErrorCode.CONVERSION_FAILED

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path, posix_only):
        binary = write_script(tmp_path / "soffice", "exec sleep 5\n")
        runner = SofficeRunner(str(binary))

        started = time.monotonic()
        with pytest.raises(ConversionError) as exc_info:
            await runner.convert(tmp_path / "in.docx", tmp_path, FilterSpec("pdf"), timeout=0.2)

        assert exc_info.value.error_code == ErrorCode.CONVERTER_TIMEOUT
        assert "timed out" in exc_info.value.message
        assert time.monotonic() - started < 4

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        runner = SofficeRunner(str(tmp_path / "no-such-soffice"))
        assert runner.is_available is False

        with pytest.raises(ConversionError) as exc_info:
            await runner.convert(tmp_path / "in.docx", tmp_path, FilterSpec("pdf"))

        assert exc_info.value.error_code == ErrorCode.CONVERTER_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_semaphore_serializes_processes(self, tmp_path, posix_only):
        binary = write_script(tmp_path / "soffice", "sleep 0.3\n")
        runner = SofficeRunner(str(binary), max_concurrent=1)

        started = time.monotonic()
        await asyncio.gather(
            runner.convert(tmp_path / "a.docx", tmp_path, FilterSpec("pdf")),
            runner.convert(tmp_path / "b.docx", tmp_path, FilterSpec("pdf")),
        )
        assert time.monotonic() - started >= 0.6

    @pytest.mark.asyncio
    async def test_export_html_falls_back_to_next_filter(self, tmp_path, posix_only):
        # Fails for the XHTML filter, writes HTML for any other
        script = """
outdir=""
prev=""
filter=""
for arg in "$@"; do
  if [ "$prev" = "--outdir" ]; then outdir="$arg"; fi
  if [ "$prev" = "--convert-to" ]; then filter="$arg"; fi
  prev="$arg"
done
case "$filter" in
  *XHTML*) echo "filter not available" >&2; exit 1 ;;
esac
printf '<p>ok</p>' > "$outdir/sheet.html"
"""
        binary = write_script(tmp_path / "soffice", script)
        profiles = WorkspaceManager(tmp_path, "profiles")
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        (out_dir / "stale.htm").write_text("old")
        runner = SofficeRunner(str(binary), profiles=profiles)

        spec = await runner.export_html(out_dir / "sheet.xlsx", out_dir)

        assert spec.filter_name == "HTML (StarCalc)"
        assert not (out_dir / "stale.htm").exists()
        assert (out_dir / "sheet.html").read_text() == "<p>ok</p>"
        assert list(profiles.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_export_html_raises_last_error(self, tmp_path, posix_only):
        binary = write_script(tmp_path / "soffice", "echo broken >&2\nexit 2\n")
        runner = SofficeRunner(str(binary), profiles=WorkspaceManager(tmp_path, "profiles"))

        with pytest.raises(ConversionError) as exc_info:
            await runner.export_html(tmp_path / "sheet.xlsx", tmp_path)

        assert exc_info.value.message == "Converter exited with code 2: broken"

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            SofficeRunner(max_concurrent=0)

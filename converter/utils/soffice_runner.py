"""
Headless LibreOffice invocation.

Builds the ``--convert-to`` filter argument and runs ``soffice`` as a
subprocess with a wall-clock timeout. A semaphore caps how many converter
processes run at once across all requests.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import (
    DEFAULT_HTML_TIMEOUT,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_PDF_TIMEOUT,
    DEFAULT_SOFFICE_BINARY,
    HTML_EXPORT_FILTERS,
)
from .error_handling import ConversionError, ErrorCode
from .logging_config import get_logger
from .workspace_manager import WorkspaceManager, remove_tree

logger = get_logger(__name__)

FilterValue = Union[bool, int, float, str]


def format_filter_value(value: FilterValue) -> str:
    """Render one FilterData value: strings single-quoted, the rest bare."""
    # bool is checked first since it is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        if "'" in value:
            raise ValueError(f"FilterData string values cannot contain a single quote: {value!r}")
        return f"'{value}'"
    raise TypeError(f"Unsupported FilterData value type: {type(value).__name__}")


def format_filter_data(options: Mapping[str, FilterValue]) -> str:
    """
    Serialize options as ``{'Key':value,...}`` keeping the caller's key order.

    >>> format_filter_data({"SinglePageSheets": True, "ScaleToPagesX": 1})
    "{'SinglePageSheets':true,'ScaleToPagesX':1}"
    """
    pairs = [f"'{key}':{format_filter_value(value)}" for key, value in options.items()]
    return "{" + ",".join(pairs) + "}"


class FilterSpec:
    """Target format, export filter, and optional FilterData options."""

    def __init__(self, target: str, filter_name: Optional[str] = None,
                 options: Optional[Mapping[str, FilterValue]] = None):
        self.target = target
        self.filter_name = filter_name
        self.options: Dict[str, FilterValue] = dict(options or {})

    @property
    def argument(self) -> str:
        """The value passed after ``--convert-to``."""
        if not self.filter_name:
            return self.target
        arg = f"{self.target}:{self.filter_name}"
        if self.options:
            arg += f":FilterData={format_filter_data(self.options)}"
        return arg

    def __str__(self):
        return self.argument

    def __repr__(self):
        return f"FilterSpec({self.argument!r})"

    def __eq__(self, other):
        return isinstance(other, FilterSpec) and self.argument == other.argument

    def __hash__(self):
        return hash(self.argument)


def build_command(binary: str, input_path: Path, output_dir: Path, spec: FilterSpec,
                  profile_dir: Optional[Path] = None, no_lock_check: bool = False) -> List[str]:
    """Assemble the soffice argument vector."""
    cmd = [binary]
    if profile_dir is not None:
        cmd.append(f"-env:UserInstallation={Path(profile_dir).resolve().as_uri()}")
    cmd.extend(["--headless", "--nologo", "--nofirststartwizard"])
    if no_lock_check:
        cmd.append("--nolockcheck")
    cmd.extend(["--convert-to", spec.argument, str(input_path), "--outdir", str(output_dir)])
    return cmd


def remove_stale_outputs(directory: Path, suffixes: Iterable[str]) -> None:
    """Delete files left in directory by an earlier attempt."""
    suffixes = tuple(s.lower() for s in suffixes)
    for entry in directory.iterdir():
        if entry.is_file() and entry.suffix.lower() in suffixes:
            try:
                entry.unlink()
                logger.debug(f"Removed stale output: {entry}")
            except OSError as e:
                logger.warning(f"Failed to remove stale output {entry}: {e}")


class SofficeRunner:
    """Runs the headless converter with admission control and timeouts."""

    def __init__(
        self,
        binary: str = DEFAULT_SOFFICE_BINARY,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        pdf_timeout: float = DEFAULT_PDF_TIMEOUT,
        html_timeout: float = DEFAULT_HTML_TIMEOUT,
        profiles: Optional[WorkspaceManager] = None,
        html_filters: Optional[Sequence[Tuple[str, Optional[Mapping[str, FilterValue]]]]] = None
    ):
        """
        Args:
            binary: Converter executable, looked up on PATH
            max_concurrent: Subprocesses allowed to run at the same time
            pdf_timeout: Default timeout in seconds for convert()
            html_timeout: Timeout in seconds for each export_html() attempt
            profiles: Manager for per-call user-profile directories
            html_filters: HTML export filters in priority order
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.binary = binary
        self.max_concurrent = max_concurrent
        self.pdf_timeout = pdf_timeout
        self.html_timeout = html_timeout
        self.profiles = profiles or WorkspaceManager(kind="profiles")
        self.html_filters = [
            FilterSpec("html", name, options)
            for name, options in (html_filters if html_filters is not None else HTML_EXPORT_FILTERS)
        ]
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    async def convert(
        self,
        input_path: Union[str, Path],
        output_dir: Union[str, Path],
        spec: FilterSpec,
        timeout: Optional[float] = None,
        profile_dir: Optional[Path] = None,
        no_lock_check: bool = False
    ) -> None:
        """
        Run one conversion and wait for the subprocess to exit.

        Raises:
            ConversionError: non-zero exit, timeout, or the binary is missing
        """
        timeout = timeout if timeout is not None else self.pdf_timeout
        cmd = build_command(self.binary, Path(input_path), Path(output_dir), spec,
                            profile_dir=profile_dir, no_lock_check=no_lock_check)

        async with self._semaphore:
            logger.debug(f"Running converter: {' '.join(cmd)}")
            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(output_dir),
                )
            except FileNotFoundError as e:
                raise ConversionError(
                    f"Converter binary not found: {self.binary}",
                    ErrorCode.CONVERTER_UNAVAILABLE,
                    cause=e,
                ) from e
            except OSError as e:
                raise ConversionError(
                    f"Failed to start converter: {e}",
                    ErrorCode.CONVERTER_UNAVAILABLE,
                    cause=e,
                ) from e

            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
            except asyncio.TimeoutError as e:
                process.kill()
                await process.wait()
                logger.error(f"Converter timed out after {timeout:g} seconds: {input_path}")
                raise ConversionError(
                    f"Conversion timed out after {timeout:g} seconds",
                    ErrorCode.CONVERTER_TIMEOUT,
                    cause=e,
                ) from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            logger.error(f"Converter exited with code {process.returncode}: {detail}")
            message = f"Converter exited with code {process.returncode}"
            if detail:
                message += f": {detail}"
            raise ConversionError(message)

        logger.debug(f"Converter finished: {spec.argument} {input_path}")

    async def export_html(self, input_path: Union[str, Path], output_dir: Union[str, Path]) -> FilterSpec:
        """
        Export a spreadsheet to HTML, trying each HTML filter in order.

        Each attempt runs with a fresh user profile that is deleted
        afterwards. Returns the filter that succeeded; if every filter fails
        the last error is raised.
        """
        output_dir = Path(output_dir)
        remove_stale_outputs(output_dir, (".html", ".htm"))

        last_error: Optional[ConversionError] = None
        for spec in self.html_filters:
            profile_dir = self.profiles.allocate()
            try:
                await self.convert(
                    input_path,
                    output_dir,
                    spec,
                    timeout=self.html_timeout,
                    profile_dir=profile_dir,
                    no_lock_check=True,
                )
                return spec
            except ConversionError as e:
                logger.warning(f"HTML export with {spec.filter_name} failed: {e.message}")
                last_error = e
            finally:
                remove_tree(profile_dir)

        if last_error is None:
            raise ConversionError("No HTML export filters configured")
        raise last_error

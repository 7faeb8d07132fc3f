"""
Shared test configuration and fixtures for converter-service tests.
"""

import os
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from app import create_app
from converter.config import ServiceSettings
from converter.utils.conversion_core import DocumentConverter
from converter.utils.result_cache import ResultCache
from converter.utils.workspace_manager import WorkspaceManager
from tests.helpers import FakeRunner


# ===== FIXTURES =====

@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def settings(tmp_path) -> ServiceSettings:
    return ServiceSettings(tmp_dir=str(tmp_path / "scratch"), cache_size=20, max_upload_mb=1)


@pytest.fixture
def converter_factory(settings) -> Callable[[FakeRunner], DocumentConverter]:
    """Build a DocumentConverter around a given runner."""
    def factory(runner) -> DocumentConverter:
        return DocumentConverter(
            runner=runner,
            jobs=WorkspaceManager(settings.tmp_dir, "jobs"),
            sheet_jobs=WorkspaceManager(settings.tmp_dir, "sheets"),
            pdf_cache=ResultCache(settings.cache_size, name="pdf"),
            sheet_cache=ResultCache(settings.cache_size, name="sheets"),
            max_upload_bytes=settings.max_upload_bytes,
        )
    return factory


@pytest.fixture
def converter(converter_factory, fake_runner) -> DocumentConverter:
    return converter_factory(fake_runner)


@pytest.fixture
def client(settings, converter):
    """FastAPI test client wired to the fake runner."""
    app = create_app(settings=settings, converter=converter)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def posix_only():
    if os.name != "posix":
        pytest.skip("shell-script converter stand-ins need a POSIX shell")

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from r2sign import dotenv_loader
from r2sign.logging import SecretFilter
from r2sign.sigv4 import Credential, Presigner
from tests.vectors import (
    ACCESS_KEY_ID,
    ENDPOINT,
    SECRET_ACCESS_KEY,
    fixed_clock,
)


_ENV_VARS = (
    "R2_ENDPOINT",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_BUCKET",
    "R2_BUCKET_NAME",
    "R2_REGION",
    "R2_PRESIGN_PUT_TTL",
    "R2_PRESIGN_GET_TTL",
    "WORKER_SECRET",
    "WORKER_URL",
    "FILES_HOST",
    "FILES_PORT",
    "FILES_CACHE_MAX_AGE",
    "FILES_ROOT",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep real credentials and .env files out of every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(dotenv_loader, "_dotenv_loaded", True)
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def presigner() -> Presigner:
    """Presigner for the R2-style test endpoint with a fixed clock."""
    return Presigner(
        Credential(ACCESS_KEY_ID, SECRET_ACCESS_KEY),
        ENDPOINT,
        clock=fixed_clock,
    )


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Minimal complete YAML config with literal values."""
    path = tmp_path / "r2sign.yaml"
    path.write_text(
        "storage:\n"
        f"  endpoint: {ENDPOINT}\n"
        f"  access_key_id: {ACCESS_KEY_ID}\n"
        f"  secret_access_key: {SECRET_ACCESS_KEY}\n"
        "  bucket: docs\n"
        "links:\n"
        "  secret: link-secret\n"
        "  base_url: https://files.example.com\n"
    )
    return path

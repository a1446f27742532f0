"""Shared test fixtures for extragrid."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from loguru import logger

from extragrid.config import Settings, get_settings
from extragrid.grid import Grid
from extragrid.models import Table
from extragrid.transport import InMemoryTransport
from tests.fakes import build_table, durable, placeholder


@pytest.fixture(autouse=True)
def _quiet_logger() -> Iterator[None]:
    """Keep loguru output out of test runs."""
    logger.remove()
    yield


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in ("EXTRAGRID_SUPABASE_URL", "EXTRAGRID_SUPABASE_KEY", "EXTRAGRID_GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, min_rows=5, min_columns=6, progress_clear_delay=0.01)


@pytest.fixture
def leads_table() -> Table:
    return build_table(
        [
            durable("r1", company_name="Acme", email="info@acme.jp", revenue=100),
            durable("r2", company_name="Globex", revenue=250),
            placeholder("tmp_a"),
            placeholder("tmp_b"),
        ]
    )


@pytest.fixture
def store(leads_table: Table) -> InMemoryTransport:
    durable_rows = [r for r in leads_table.rows if not r.is_placeholder]
    return InMemoryTransport([leads_table.with_rows(durable_rows)])


@pytest.fixture
def grid(leads_table: Table, store: InMemoryTransport) -> Grid:
    return Grid(leads_table, store)


@pytest.fixture
def local_grid(leads_table: Table) -> Grid:
    return Grid(leads_table)

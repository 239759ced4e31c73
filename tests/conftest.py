"""
tests/conftest.py
-----------------
Shared fixtures.
"""
from __future__ import annotations

from typing import Any, Callable

import pytest

from schemabridge.models.options import Endpoint, MigrationOptions
from tests.fakes import FakeAdapter, make_table


@pytest.fixture
def customers_rows() -> list[dict[str, Any]]:
    return [{"ID": i, "NAME": f"customer {i}"} for i in range(1, 2501)]


@pytest.fixture
def source(customers_rows) -> FakeAdapter:
    table = make_table(
        "CUSTOMERS", ("ID", "INTEGER"), ("NAME", "VARCHAR(50)"), primary_keys=("ID",)
    )
    return FakeAdapter(tables=[table], rows={"CUSTOMERS": customers_rows})


@pytest.fixture
def target() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def make_options() -> Callable[..., MigrationOptions]:
    """Options over two adapters; no retry back-off unless asked for."""

    def _make(src: FakeAdapter, tgt: FakeAdapter, **overrides: Any) -> MigrationOptions:
        overrides.setdefault("retry_delay", 0)
        return MigrationOptions(
            source=Endpoint(adapter=src),
            target=Endpoint(adapter=tgt),
            **overrides,
        )

    return _make

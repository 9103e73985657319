"""
Pytest fixtures for the fiscal kernel test suite.

Provides:
- Structured logging fixtures
- A deterministic clock (2024-01-01 12:00 UTC)
- Reference data loaded from the packaged YAML
- In-memory, SQLite and (when DATABASE_URL is set) PostgreSQL sequence stores
- Allocator and compositor wired to those stores
"""

import json
import logging
import os
from datetime import date
from io import StringIO

import pytest

from fiscal_config.loader import load_reference_data
from fiscal_config.settings import FiscalSettings
from fiscal_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from fiscal_kernel.domain.clock import DeterministicClock
from fiscal_kernel.domain.taxpayer import Customer
from fiscal_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fiscal_kernel.services.invoice_compositor import InvoiceCompositor
from fiscal_kernel.services.reference_data import ReferenceDataCache
from fiscal_kernel.services.sequence_allocator import SequenceAllocator
from fiscal_kernel.services.sequence_store import (
    InMemorySequenceStore,
    SqlAlchemySequenceStore,
)
from fiscal_kernel.services.taxpayer_registry import (
    InMemoryTaxpayerRegistry,
    TaxpayerRecord,
    TaxpayerStatus,
)

# Valid check digits.
REGISTERED_RNC = "101010632"
SUSPENDED_RNC = "101000007"
UNREGISTERED_RNC = "131246796"
REGISTERED_CEDULA = "00113918205"

RANGE_EXPIRATION = date(2024, 12, 31)

DATABASE_URL_ENV = "DATABASE_URL"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fiscal_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocator):
            allocator.issue_next("B01")
            logs = captured_logs()
            assert any(r["message"] == "ncf_issued" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fiscal_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time, settings, reference data
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def settings():
    return FiscalSettings(lock_timeout_seconds=2, contention_backoff_seconds=0)


@pytest.fixture(scope="session")
def reference_data():
    return load_reference_data()


@pytest.fixture
def tax_table(reference_data):
    return reference_data.tax_table


@pytest.fixture
def document_types(reference_data):
    return reference_data.document_types


@pytest.fixture
def reference_cache(reference_data):
    return ReferenceDataCache.from_reference_data(reference_data)


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store(reference_data):
    return InMemorySequenceStore(
        reference_data.tax_table.all(), reference_data.document_types.all()
    )


@pytest.fixture
def sqlite_session_factory(tmp_path):
    """File-backed SQLite so that separate threads use separate connections."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'fiscal.db'}")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def sqlite_store(sqlite_session_factory, reference_data):
    store = SqlAlchemySequenceStore(sqlite_session_factory)
    store.seed_reference_data(
        reference_data.tax_table.all(), reference_data.document_types.all()
    )
    return store


@pytest.fixture
def postgres_session_factory():
    """PostgreSQL from DATABASE_URL; skipped when it is not set."""
    url = os.environ.get(DATABASE_URL_ENV, "")
    if not url.startswith("postgresql"):
        pytest.skip(f"{DATABASE_URL_ENV} does not point at PostgreSQL")
    init_engine_from_url(url)
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def postgres_store(postgres_session_factory, reference_data):
    store = SqlAlchemySequenceStore(postgres_session_factory)
    store.seed_reference_data(
        reference_data.tax_table.all(), reference_data.document_types.all()
    )
    return store


@pytest.fixture(
    params=["memory", "sqlite", pytest.param("postgres", marks=pytest.mark.postgres)]
)
def store(request):
    """Run the test once per store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def allocator(store, reference_cache, clock, settings):
    return SequenceAllocator(store, reference_cache, clock=clock, settings=settings)


@pytest.fixture
def taxpayer_registry():
    return InMemoryTaxpayerRegistry([
        TaxpayerRecord(REGISTERED_RNC, "Distribuidora del Caribe SRL"),
        TaxpayerRecord(REGISTERED_CEDULA, "Juan Pérez"),
        TaxpayerRecord(SUSPENDED_RNC, "Ferretería Cibao SRL", TaxpayerStatus.SUSPENDED),
    ])


@pytest.fixture
def sleeps():
    """Recorded backoff delays instead of real sleeping."""
    return []


@pytest.fixture
def compositor(allocator, reference_cache, taxpayer_registry, clock, settings, sleeps):
    return InvoiceCompositor(
        allocator,
        reference_cache,
        taxpayer_registry=taxpayer_registry,
        clock=clock,
        settings=settings,
        sleep=sleeps.append,
    )


@pytest.fixture
def business_customer():
    return Customer("CUST-001", "Distribuidora del Caribe SRL", taxpayer_id="101-01063-2")


@pytest.fixture
def consumer():
    return Customer("CUST-002", "Consumidor final")


@pytest.fixture
def register_range(allocator):
    """Register a range with sensible defaults."""

    def _register(
        document_type="B01",
        series="1",
        range_start=1,
        range_end=100,
        expiration=RANGE_EXPIRATION,
        active=True,
    ):
        return allocator.register_sequence(
            document_type, series, range_start, range_end, expiration, active=active
        )

    return _register

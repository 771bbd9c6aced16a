"""Shared test fixtures for Utility Billing."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator

import aiosqlite
import pytest
import pytest_asyncio

from utility_billing.billing.engine import BillingEngine
from utility_billing.billing.ledger import LedgerService
from utility_billing.billing.locks import CustomerLocks
from utility_billing.config.manager import ConfigManager
from utility_billing.config.schema import AppConfig
from utility_billing.db.engine import close_db, init_db
from utility_billing.repository.memory import (
    MemoryCustomerRepository,
    MemoryInvoiceRepository,
    MemoryPaymentRepository,
    MemoryReadingRepository,
    MemoryTariffRepository,
)
from utility_billing.tariff.catalog import TariffCatalog


@pytest.fixture
def config() -> AppConfig:
    """Provide a default test configuration."""
    return AppConfig()


@pytest.fixture
def config_manager(tmp_path: Path) -> ConfigManager:
    """Provide a config manager with test paths."""
    defaults = tmp_path / "config.defaults.yaml"
    defaults.write_text("db:\n  path: ':memory:'\n")
    user = tmp_path / "config.yaml"
    mgr = ConfigManager(defaults_path=defaults, user_path=user)
    mgr.load()
    return mgr


# ── In-memory stores and services ───────────────────────────


@pytest.fixture
def readings() -> MemoryReadingRepository:
    return MemoryReadingRepository()


@pytest.fixture
def tariffs() -> MemoryTariffRepository:
    return MemoryTariffRepository()


@pytest.fixture
def customers() -> MemoryCustomerRepository:
    return MemoryCustomerRepository()


@pytest.fixture
def invoices(config: AppConfig) -> MemoryInvoiceRepository:
    return MemoryInvoiceRepository(config.billing.invoice_number_start)


@pytest.fixture
def payments() -> MemoryPaymentRepository:
    return MemoryPaymentRepository()


@pytest.fixture
def locks() -> CustomerLocks:
    return CustomerLocks()


@pytest.fixture
def engine(
    config: AppConfig,
    readings: MemoryReadingRepository,
    tariffs: MemoryTariffRepository,
    customers: MemoryCustomerRepository,
    invoices: MemoryInvoiceRepository,
    locks: CustomerLocks,
) -> BillingEngine:
    return BillingEngine(config, readings, tariffs, customers, invoices, locks=locks)


@pytest.fixture
def ledger(
    customers: MemoryCustomerRepository,
    invoices: MemoryInvoiceRepository,
    payments: MemoryPaymentRepository,
    locks: CustomerLocks,
) -> LedgerService:
    return LedgerService(customers, invoices, payments, locks=locks)


@pytest.fixture
def catalog(config: AppConfig, tariffs: MemoryTariffRepository) -> TariffCatalog:
    return TariffCatalog(config, tariffs)


# ── SQLite ──────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """Provide a fresh on-disk database for each test."""
    conn = await init_db(tmp_path / "test.db")
    yield conn
    await close_db()

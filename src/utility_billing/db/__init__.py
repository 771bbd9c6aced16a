"""SQLite storage for Utility Billing."""

from utility_billing.db.engine import close_db, get_db, init_db, open_db
from utility_billing.db.repository import (
    SqliteCustomerRepository,
    SqliteInvoiceRepository,
    SqlitePaymentRepository,
    SqliteReadingRepository,
    SqliteTariffRepository,
)

__all__ = [
    "close_db",
    "get_db",
    "init_db",
    "open_db",
    "SqliteCustomerRepository",
    "SqliteInvoiceRepository",
    "SqlitePaymentRepository",
    "SqliteReadingRepository",
    "SqliteTariffRepository",
]

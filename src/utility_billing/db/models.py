"""SQL table definitions.

Entities are stored as pydantic JSON in ``data_json``; the other columns
are the keys the repositories filter and order on. Money columns are
Decimal text.
"""

SCHEMA_VERSION = 1

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id              INTEGER PRIMARY KEY CHECK (id = 1),
        version         INTEGER NOT NULL
    )
    """,

    # ── Customers ───────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS customers (
        customer_id     TEXT PRIMARY KEY,
        account_number  TEXT NOT NULL UNIQUE,
        tariff_id       TEXT,
        account_balance TEXT NOT NULL DEFAULT '0',
        active          INTEGER NOT NULL DEFAULT 1,
        data_json       TEXT NOT NULL,
        updated_at      TEXT NOT NULL
    )
    """,

    # ── Tariffs ─────────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS tariffs (
        tariff_id       TEXT PRIMARY KEY,
        kind            TEXT NOT NULL,
        meter_type      TEXT NOT NULL,
        active          INTEGER NOT NULL DEFAULT 1,
        effective_from  TEXT NOT NULL,
        effective_to    TEXT,
        data_json       TEXT NOT NULL
    )
    """,

    # ── Meter Readings ──────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS meter_readings (
        reading_id      TEXT PRIMARY KEY,
        meter_id        TEXT NOT NULL,
        customer_id     TEXT NOT NULL,
        reading_date    TEXT NOT NULL,
        billed          INTEGER NOT NULL DEFAULT 0,
        invoice_id      TEXT,
        recorded_at     TEXT NOT NULL,
        data_json       TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_readings_meter_date ON meter_readings(meter_id, reading_date)",

    # ── Invoices ────────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS invoices (
        invoice_id      TEXT PRIMARY KEY,
        invoice_number  TEXT NOT NULL UNIQUE,
        customer_id     TEXT NOT NULL,
        status          TEXT NOT NULL,
        issue_date      TEXT NOT NULL,
        due_date        TEXT NOT NULL,
        total_amount    TEXT NOT NULL,
        balance_due     TEXT NOT NULL,
        data_json       TEXT NOT NULL,
        updated_at      TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_invoices_customer ON invoices(customer_id, issue_date)",
    "CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices(status)",
    """
    CREATE TABLE IF NOT EXISTS invoice_sequence (
        id              INTEGER PRIMARY KEY CHECK (id = 1),
        next_number     INTEGER NOT NULL
    )
    """,

    # ── Payments ────────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS payments (
        payment_id      TEXT PRIMARY KEY,
        reference       TEXT NOT NULL UNIQUE,
        customer_id     TEXT NOT NULL,
        invoice_id      TEXT,
        amount          TEXT NOT NULL,
        status          TEXT NOT NULL,
        payment_date    TEXT NOT NULL,
        recorded_at     TEXT NOT NULL,
        data_json       TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_payments_customer ON payments(customer_id, payment_date)",
]

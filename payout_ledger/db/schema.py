"""Table definitions for the ledger, per SQL dialect."""

_POSTGRES = [
    """
    CREATE TABLE IF NOT EXISTS guild_settings (
        guild_id VARCHAR(255) PRIMARY KEY,
        payout_role VARCHAR(255),
        log_channel VARCHAR(255)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id SERIAL PRIMARY KEY,
        guild_id VARCHAR(255) NOT NULL,
        service_type VARCHAR(50) NOT NULL,
        email VARCHAR(255) NOT NULL,
        secret VARCHAR(255) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (guild_id, service_type, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id SERIAL PRIMARY KEY,
        guild_id VARCHAR(255) NOT NULL,
        user_id VARCHAR(255) NOT NULL,
        service_type VARCHAR(50) NOT NULL,
        account_email VARCHAR(255) NOT NULL,
        generated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

_SQLITE = [
    """
    CREATE TABLE IF NOT EXISTS guild_settings (
        guild_id TEXT PRIMARY KEY,
        payout_role TEXT,
        log_channel TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id TEXT NOT NULL,
        service_type TEXT NOT NULL,
        email TEXT NOT NULL,
        secret TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (guild_id, service_type, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        service_type TEXT NOT NULL,
        account_email TEXT NOT NULL,
        generated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_accounts_guild_service ON accounts (guild_id, service_type)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_guild ON transactions (guild_id)",
]


def schema_statements(dialect: str):
    """Return the DDL statements for a dialect, one statement per entry."""
    if dialect == "postgres":
        return _POSTGRES + _INDEXES
    if dialect == "sqlite":
        return _SQLITE + _INDEXES
    raise ValueError(f"Unknown dialect: {dialect}")

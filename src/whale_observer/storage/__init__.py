"""Storage layer - Alert ledger backends, schema and repositories."""

from whale_observer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from whale_observer.storage.ledger import (
    AlertLedger,
    AlertLedgerError,
    DatabaseAlertLedger,
    InMemoryAlertLedger,
    RedisAlertLedger,
    create_alert_ledger,
)
from whale_observer.storage.models import AlertedTransactionModel, Base
from whale_observer.storage.repos import AlertedTransactionDTO, AlertedTransactionRepository

__all__ = [
    "AlertLedger",
    "AlertLedgerError",
    "AlertedTransactionDTO",
    "AlertedTransactionModel",
    "AlertedTransactionRepository",
    "Base",
    "DatabaseAlertLedger",
    "DatabaseManager",
    "InMemoryAlertLedger",
    "RedisAlertLedger",
    "create_alert_ledger",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]

"""Storage layer - Database schemas, repositories and the transfer store."""

from accumulation_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from accumulation_tracker.storage.models import (
    AccumulationSignalModel,
    AlertModel,
    Base,
    SweepLockModel,
    TokenModel,
    TransferModel,
    UserModel,
    WalletModel,
    WalletPositionModel,
)
from accumulation_tracker.storage.repos import (
    AlertRepository,
    PositionRepository,
    ScreenerRepository,
    SignalRepository,
    SweepLockRepository,
    TokenRepository,
    TransferRepository,
    UserRepository,
    WalletDTO,
    WalletRepository,
)
from accumulation_tracker.storage.store import ScreenerMetricsLoader, SqlTransferStore, TransferStore

__all__ = [
    "AccumulationSignalModel",
    "AlertModel",
    "AlertRepository",
    "Base",
    "DatabaseManager",
    "PositionRepository",
    "ScreenerMetricsLoader",
    "ScreenerRepository",
    "SignalRepository",
    "SqlTransferStore",
    "SweepLockModel",
    "SweepLockRepository",
    "TokenModel",
    "TokenRepository",
    "TransferModel",
    "TransferRepository",
    "TransferStore",
    "UserModel",
    "UserRepository",
    "WalletDTO",
    "WalletModel",
    "WalletPositionModel",
    "WalletRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]

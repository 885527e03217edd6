"""Ingestion layer - Validated token transfers and wallet labels."""

from accumulation_tracker.ingestor.models import (
    ZERO_ADDRESS,
    Token,
    Transfer,
    WalletPosition,
    WalletRegistry,
    compute_balance,
    unique_transfers,
)

__all__ = [
    "ZERO_ADDRESS",
    "Token",
    "Transfer",
    "WalletPosition",
    "WalletRegistry",
    "compute_balance",
    "unique_transfers",
]

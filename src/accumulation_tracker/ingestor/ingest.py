"""Idempotent transfer ingestion.

Validates raw transfer records, stores the new ones, creates wallets on
first sight and recomputes the affected wallet positions from full
history so that replaying the same batch changes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from accumulation_tracker.errors import DataIntegrityError
from accumulation_tracker.ingestor.models import ZERO_ADDRESS, Transfer, unique_transfers
from accumulation_tracker.storage.repos import (
    PositionRepository,
    TokenRepository,
    TransferRepository,
    WalletRepository,
)

if TYPE_CHECKING:
    from accumulation_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    received: int = 0
    invalid: int = 0
    unknown_token: int = 0
    inserted: int = 0
    duplicates: int = 0
    positions_updated: int = 0


class TransferIngestor:
    """Writes validated transfers and keeps wallet positions current."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def parse(self, records: Iterable[Mapping[str, Any] | Transfer], report: IngestReport) -> list[Transfer]:
        transfers: list[Transfer] = []
        for record in records:
            report.received += 1
            if isinstance(record, Transfer):
                transfers.append(record)
                continue
            try:
                transfers.append(Transfer.from_dict(dict(record)))
            except (DataIntegrityError, ValueError) as e:
                report.invalid += 1
                logger.warning("Skipping invalid transfer record: %s", e)
        return unique_transfers(transfers)

    async def ingest(self, records: Iterable[Mapping[str, Any] | Transfer]) -> IngestReport:
        report = IngestReport()
        transfers = self.parse(records, report)
        if not transfers:
            return report

        now = datetime.now(UTC)
        async with self._db.get_async_session() as session:
            known = await TokenRepository(session).get_many(sorted({t.token_id for t in transfers}))
            accepted = []
            for transfer in transfers:
                if transfer.token_id not in known:
                    report.unknown_token += 1
                    logger.warning("Skipping transfer %s of unknown token %s", transfer.tx_hash, transfer.token_id)
                    continue
                accepted.append(transfer)
            if not accepted:
                return report

            report.inserted = await TransferRepository(session).insert_many(accepted)
            report.duplicates = len(accepted) - report.inserted

            touched = sorted(
                {
                    (address.lower(), t.token_id)
                    for t in accepted
                    for address in (t.from_address, t.to_address)
                    if address.lower() != ZERO_ADDRESS
                }
            )
            wallet_ids = await WalletRepository(session).ensure_many(address for address, _ in touched)

            transfers_repo = TransferRepository(session)
            positions = PositionRepository(session)
            for address, token_id in touched:
                incoming, outgoing = await transfers_repo.net_flow(address, token_id)
                await positions.upsert(wallet_ids[address], token_id, max(0, incoming - outgoing), at=now)
                report.positions_updated += 1

        logger.info(
            "Ingested transfers: received=%d inserted=%d duplicates=%d invalid=%d unknown_token=%d",
            report.received,
            report.inserted,
            report.duplicates,
            report.invalid,
            report.unknown_token,
        )
        return report

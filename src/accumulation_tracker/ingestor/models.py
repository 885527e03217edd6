"""Data models for the ingestor module."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from accumulation_tracker.errors import DataIntegrityError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=UTC)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise DataIntegrityError(f"Invalid transfer timestamp: {value!r}")


def _parse_amount(value: Any) -> int:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise DataIntegrityError(f"Invalid transfer amount: {value!r}") from e
    if not amount.is_finite() or amount != amount.to_integral_value():
        raise DataIntegrityError(f"Transfer amount must be an integer in the smallest unit: {value!r}")
    if amount < 0:
        raise DataIntegrityError(f"Negative transfer amount: {value!r}")
    return int(amount)


@dataclass(frozen=True)
class Token:
    """A tracked token on one chain."""

    id: str
    chain: str
    symbol: str
    name: str
    contract_address: str
    decimals: int = 18
    active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)
    created_at: datetime | None = None

    def _metadata_decimal(self, key: str) -> Decimal | None:
        raw = self.metadata.get(key)
        if raw is None or raw == "":
            return None
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            return None

    @property
    def price_usd(self) -> Decimal | None:
        """Spot price from metadata enrichment, if known."""
        return self._metadata_decimal("price_usd")

    @property
    def market_cap(self) -> Decimal | None:
        """Market cap from metadata enrichment, if known."""
        return self._metadata_decimal("market_cap")

    @property
    def price_change_24h(self) -> Decimal | None:
        """24h price change as a fraction (0.15 == +15%), if known."""
        return self._metadata_decimal("price_change_24h")

    @property
    def launched_at(self) -> datetime | None:
        """Launch time from metadata enrichment, falling back to creation time."""
        raw = self.metadata.get("launched_at")
        if raw:
            try:
                return _parse_timestamp(raw)
            except (DataIntegrityError, ValueError):
                pass
        return self.created_at

    def to_units(self, amount: int | Decimal) -> Decimal:
        """Convert a smallest-unit amount into whole tokens."""
        return Decimal(amount).scaleb(-self.decimals)


@dataclass(frozen=True)
class Transfer:
    """A finalized token transfer.

    ``amount`` is an integer in the token's smallest unit. Transfers are
    unique by ``(tx_hash, token_id)``.
    """

    tx_hash: str
    from_address: str
    to_address: str
    token_id: str
    amount: int
    block_number: int
    timestamp: datetime
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
    id: int | None = field(default=None, compare=False)

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Natural key used for idempotent ingestion."""
        return (self.tx_hash.lower(), self.token_id)

    @property
    def value(self) -> Decimal:
        """Trade value used for performance approximation.

        Uses an attached ``value_usd`` when the ingestion source provides one,
        otherwise the transfer amount doubles as its value.
        """
        raw_value = self.raw.get("value_usd")
        if raw_value is not None:
            try:
                parsed = Decimal(str(raw_value))
                if parsed.is_finite() and parsed >= 0:
                    return parsed
            except InvalidOperation:
                pass
        return Decimal(self.amount)

    def involves(self, address: str) -> bool:
        normalized = address.lower()
        return self.from_address == normalized or self.to_address == normalized

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transfer:
        """Create a validated Transfer from an ingestion record.

        Raises:
            DataIntegrityError: If the record is malformed.
        """
        token_id = data.get("token_id") or data.get("tokenId")
        if not token_id:
            raise DataIntegrityError("Transfer is missing a token reference")
        tx_hash = data.get("tx_hash") or data.get("txHash")
        if not tx_hash:
            raise DataIntegrityError("Transfer is missing a transaction hash")
        from_address = data.get("from_address") or data.get("fromAddress")
        to_address = data.get("to_address") or data.get("toAddress")
        if not from_address or not to_address:
            raise DataIntegrityError(f"Transfer {tx_hash} is missing an address")
        block_number = data.get("block_number", data.get("blockNumber"))
        try:
            block = int(block_number)
        except (TypeError, ValueError) as e:
            raise DataIntegrityError(f"Transfer {tx_hash} has an invalid block number") from e
        if block < 0:
            raise DataIntegrityError(f"Transfer {tx_hash} has a negative block number")

        return cls(
            tx_hash=str(tx_hash).lower(),
            from_address=str(from_address).lower(),
            to_address=str(to_address).lower(),
            token_id=str(token_id),
            amount=_parse_amount(data.get("amount")),
            block_number=block,
            timestamp=_parse_timestamp(data.get("timestamp")),
            raw=dict(data.get("raw") or {}),
        )


@dataclass(frozen=True)
class WalletRegistry:
    """Address labels in effect for one sweep."""

    tracked: frozenset[str] = frozenset()
    exchanges: frozenset[str] = frozenset()
    liquidity_pools: frozenset[str] = frozenset()

    @classmethod
    def from_addresses(
        cls,
        *,
        tracked: Iterable[str] = (),
        exchanges: Iterable[str] = (),
        liquidity_pools: Iterable[str] = (),
    ) -> WalletRegistry:
        return cls(
            tracked=frozenset(a.lower() for a in tracked),
            exchanges=frozenset(a.lower() for a in exchanges),
            liquidity_pools=frozenset(a.lower() for a in liquidity_pools),
        )

    def is_tracked(self, address: str) -> bool:
        return address in self.tracked

    def is_exchange(self, address: str) -> bool:
        return address in self.exchanges

    def is_liquidity_pool(self, address: str) -> bool:
        return address in self.liquidity_pools

    def is_venue(self, address: str) -> bool:
        """True for exchange or pool addresses, which never count as buyers."""
        return address in self.exchanges or address in self.liquidity_pools or address == ZERO_ADDRESS


@dataclass(frozen=True)
class WalletPosition:
    """Current holdings snapshot of one wallet in one token."""

    wallet_id: int
    token_id: str
    balance: int
    last_updated_at: datetime


def unique_transfers(transfers: Iterable[Transfer]) -> list[Transfer]:
    """Drop repeated transfers by natural key, keeping first occurrences in order."""
    seen: set[tuple[str, str]] = set()
    result: list[Transfer] = []
    for transfer in transfers:
        key = transfer.dedup_key
        if key in seen:
            continue
        seen.add(key)
        result.append(transfer)
    return result


def compute_balance(address: str, transfers: Sequence[Transfer]) -> int:
    """Net holdings of ``address`` from its transfers, clamped at zero."""
    normalized = address.lower()
    incoming = 0
    outgoing = 0
    for transfer in unique_transfers(transfers):
        if transfer.to_address == normalized:
            incoming += transfer.amount
        if transfer.from_address == normalized:
            outgoing += transfer.amount
    return max(0, incoming - outgoing)

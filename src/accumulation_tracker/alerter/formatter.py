"""Alert message formatting.

This module turns a persisted AccumulationSignal and its token into the
plain-text notification body carried by each alert emission.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from accumulation_tracker.detector.models import AccumulationSignal
from accumulation_tracker.ingestor.models import Token

WINDOW_TIME_FORMAT = "%Y-%m-%d %H:%M UTC"


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_amount(amount: Decimal) -> str:
    """Compact human-readable amount (1.25M, 830.00K, 12.50)."""
    magnitude = abs(amount)
    if magnitude >= 1_000_000_000:
        return f"{amount / 1_000_000_000:,.2f}B"
    if magnitude >= 1_000_000:
        return f"{amount / 1_000_000:,.2f}M"
    if magnitude >= 1_000:
        return f"{amount / 1_000:,.2f}K"
    return f"{amount:,.2f}"


def _format_time(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime(WINDOW_TIME_FORMAT)


def format_alert_message(signal: AccumulationSignal, token: Token) -> str:
    """Build the notification text for one signal."""
    lines = [
        "🚨 Accumulation Signal Detected!",
        "",
        f"Token: {token.name} ({token.symbol})",
        f"Chain: {token.chain}",
        f"Score: {signal.score:.2f}/100",
        f"Type: {signal.signal_type.label}",
        f"Time Window: {_format_time(signal.window_start)} - {_format_time(signal.window_end)}",
        f"Wallets Involved: {len(signal.wallets_involved)}",
    ]
    if signal.total_volume > 0:
        lines.append(f"Volume: {format_amount(token.to_units(signal.total_volume))} {token.symbol}")
    if signal.wallets_involved:
        lines.append(f"Top Wallet: {truncate_address(signal.wallets_involved[0])}")
    return "\n".join(lines)


def format_alert_subject(signal: AccumulationSignal, token: Token) -> str:
    """Short subject line for email delivery."""
    return f"🚨 Accumulation Signal: {token.symbol} (Score: {signal.score:.2f})"

"""
Payout and snapshot data models.

Payout is the canonical unit every tier counts; MonthlySnapshot is the durable,
create-only per-entity/per-month artifact. to_dict()/from_dict() use the
camelCase document layout the snapshot files are written in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class PaymentMethod(str, Enum):
    RISE = "rise"
    CRYPTO = "crypto"
    WIRE = "wire"


PAYMENT_METHODS = tuple(m.value for m in PaymentMethod)


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 string (Z or offset) to an aware UTC datetime."""
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Aware datetime to ISO-8601 UTC with a Z suffix (second precision)."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Payout:
    tx_hash: str
    entity_id: str
    amount_usd: float
    payment_method: PaymentMethod
    timestamp: str
    """ISO-8601 UTC instant."""
    from_address: str
    to_address: str

    @property
    def hash_key(self) -> str:
        return self.tx_hash.lower()

    @property
    def unix_timestamp(self) -> int:
        return int(parse_timestamp(self.timestamp).timestamp())

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "amount": self.amount_usd,
            "payment_method": self.payment_method.value,
            "timestamp": self.timestamp,
            "from_address": self.from_address,
            "to_address": self.to_address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], entity_id: str) -> "Payout":
        method = str(data.get("payment_method") or PaymentMethod.CRYPTO.value)
        return cls(
            tx_hash=str(data["tx_hash"]),
            entity_id=entity_id,
            amount_usd=float(data.get("amount", data.get("amount_usd", 0.0))),
            payment_method=PaymentMethod(method) if method in PAYMENT_METHODS else PaymentMethod.CRYPTO,
            timestamp=str(data["timestamp"]),
            from_address=str(data.get("from_address") or ""),
            to_address=str(data.get("to_address") or ""),
        )


@dataclass
class DailyBucket:
    date: str
    """Entity-local calendar day, YYYY-MM-DD."""
    total: float = 0.0
    rise: float = 0.0
    crypto: float = 0.0
    wire: float = 0.0

    def add(self, payout: Payout) -> None:
        self.total += payout.amount_usd
        method = payout.payment_method.value
        setattr(self, method, getattr(self, method) + payout.amount_usd)

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "total": self.total, "rise": self.rise, "crypto": self.crypto, "wire": self.wire}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailyBucket":
        return cls(
            date=str(data["date"]),
            total=float(data.get("total", 0.0)),
            rise=float(data.get("rise", 0.0)),
            crypto=float(data.get("crypto", 0.0)),
            wire=float(data.get("wire", 0.0)),
        )


@dataclass
class Summary:
    total_payouts: float = 0.0
    payout_count: int = 0
    largest_payout: float = 0.0
    avg_payout: float = 0.0

    @classmethod
    def from_amounts(cls, amounts: list[float]) -> "Summary":
        if not amounts:
            return cls()
        total = sum(amounts)
        return cls(
            total_payouts=total,
            payout_count=len(amounts),
            largest_payout=max(amounts),
            avg_payout=total / len(amounts),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPayouts": self.total_payouts,
            "payoutCount": self.payout_count,
            "largestPayout": self.largest_payout,
            "avgPayout": self.avg_payout,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        return cls(
            total_payouts=float(data.get("totalPayouts", 0.0)),
            payout_count=int(data.get("payoutCount", 0)),
            largest_payout=float(data.get("largestPayout", 0.0)),
            avg_payout=float(data.get("avgPayout", 0.0)),
        )


@dataclass
class MonthlySnapshot:
    entity_id: str
    year_month: str
    timezone: str
    generated_at: str
    summary: Summary
    daily_buckets: list[DailyBucket] = field(default_factory=list)
    transactions: list[Payout] = field(default_factory=list)

    def tx_hashes(self) -> set[str]:
        return {p.hash_key for p in self.transactions}

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "period": self.year_month,
            "timezone": self.timezone,
            "generatedAt": self.generated_at,
            "summary": self.summary.to_dict(),
            "dailyBuckets": [b.to_dict() for b in self.daily_buckets],
            "transactions": [p.to_dict() for p in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonthlySnapshot":
        """Parse a stored document. Raises KeyError/ValueError/TypeError on malformed input."""
        entity_id = str(data["entityId"])
        return cls(
            entity_id=entity_id,
            year_month=str(data["period"]),
            timezone=str(data.get("timezone") or "UTC"),
            generated_at=str(data.get("generatedAt") or ""),
            summary=Summary.from_dict(data.get("summary") or {}),
            daily_buckets=[DailyBucket.from_dict(b) for b in data.get("dailyBuckets") or []],
            transactions=[Payout.from_dict(t, entity_id) for t in data.get("transactions") or []],
        )

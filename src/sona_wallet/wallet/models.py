"""Runtime data model for the transfer pipeline and wallet session."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from solders.transaction import Transaction


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Direction(str, Enum):
    IN = "in"
    OUT = "out"


class ConfirmationState(str, Enum):
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ConfirmationState.SUBMITTED


class ConfirmationStatus(str, Enum):
    """Outcome of waiting for a submitted transaction."""

    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"      # timed out; the transaction may still land
    CANCELLED = "cancelled"  # watcher stopped (disconnect / shutdown)


class TransferStage(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STAGES


_TERMINAL_STAGES = {TransferStage.CONFIRMED, TransferStage.FAILED, TransferStage.EXPIRED}

_NEXT_STAGE: dict[TransferStage, set[TransferStage]] = {
    TransferStage.PENDING: {TransferStage.VALIDATED},
    TransferStage.VALIDATED: {TransferStage.BUILT},
    TransferStage.BUILT: {TransferStage.SIGNED},
    TransferStage.SIGNED: {TransferStage.SUBMITTED},
    TransferStage.SUBMITTED: {TransferStage.CONFIRMED, TransferStage.EXPIRED},
}


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Intent:
    """A transfer request extracted from chat text. Never persisted."""

    asset: str
    amount: Decimal
    recipient: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive and finite, got {self.amount}")
        object.__setattr__(self, "asset", self.asset.upper())

    def describe(self) -> str:
        return f"{format(self.amount.normalize(), 'f')} {self.asset} to {self.recipient}"


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransactionRecord:
    signature: str
    asset: str
    amount: Decimal
    direction: Direction
    state: ConfirmationState = ConfirmationState.SUBMITTED
    timestamp: datetime = field(default_factory=_utcnow)

    def with_state(self, state: ConfirmationState) -> TransactionRecord:
        return replace(self, state=state)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "asset": self.asset,
            "amount": str(self.amount),
            "direction": self.direction.value,
            "state": self.state.value,
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# Wallet session snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WalletSession:
    """Immutable snapshot of the wallet state owned by the store."""

    identity: str | None = None
    native_symbol: str = "SOL"
    native_balance: Decimal | None = None
    fungible_balances: Mapping[str, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )
    last_refreshed: Mapping[str, datetime] = field(
        default_factory=lambda: MappingProxyType({})
    )
    history: tuple[TransactionRecord, ...] = ()

    @property
    def connected(self) -> bool:
        return self.identity is not None

    def balance_of(self, symbol: str) -> Decimal | None:
        symbol = symbol.upper()
        if symbol == self.native_symbol:
            return self.native_balance
        return self.fungible_balances.get(symbol)

    def to_dict(self) -> dict[str, Any]:
        balances = {self.native_symbol: self.native_balance}
        balances.update(self.fungible_balances)
        return {
            "identity": self.identity,
            "connected": self.connected,
            "balances": {k: (str(v) if v is not None else None) for k, v in balances.items()},
            "last_refreshed": {k: v.isoformat() for k, v in self.last_refreshed.items()},
            "history": [r.to_dict() for r in self.history],
        }


# ---------------------------------------------------------------------------
# Transfer workflow object
# ---------------------------------------------------------------------------

@dataclass
class UnsignedTransaction:
    """A built but unsigned transaction plus the recency window it is valid for."""

    transaction: Transaction
    blockhash: str
    last_valid_block_height: int
    instruction_count: int


@dataclass
class TransferRequest:
    """Carries one transfer attempt through the pipeline stages."""

    intent: Intent
    sender: str
    stage: TransferStage = TransferStage.PENDING
    unsigned: UnsignedTransaction | None = None
    signed: Transaction | None = None
    signature: str | None = None
    error: BaseException | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def advance(self, stage: TransferStage) -> None:
        if self.stage.is_terminal:
            raise RuntimeError(f"Transfer already finished in stage {self.stage.value}")
        if stage is TransferStage.FAILED:
            self.stage = stage
            return
        if stage not in _NEXT_STAGE.get(self.stage, set()):
            raise RuntimeError(
                f"Illegal transfer transition {self.stage.value} -> {stage.value}"
            )
        self.stage = stage

    def fail(self, error: BaseException) -> None:
        self.error = error
        self.advance(TransferStage.FAILED)

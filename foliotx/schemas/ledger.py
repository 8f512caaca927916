"""
foliotx/schemas/ledger.py

Pydantic v2 models for the ledger documents. These are the values the pure
services pass around (portfolios in, portfolios out) and also the JSON shape
that is persisted and exported. Field names are snake_case in Python and
camelCase on the wire (totalCost, closedPositions, transferredFrom, ...).

- TxType: the six ledger event types
- Transaction: one immutable ledger event (with linkage/provenance fields)
- Asset: a position in one ticker (quantity/cost fields are derived)
- ClosedPosition: one FIFO match between an acquisition lot and a disposal
- Portfolio / PortfolioBundle: ownership roots and the export bundle
- ValidationResult / RemovalPlan / MutationResult / ChainLink: engine results
"""

import datetime as dt
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from foliotx.constants import (
    DEFAULT_ASSET_TYPE,
    DEFAULT_CURRENCY,
    DEFAULT_TAG,
    PORTFOLIO_COLORS,
)


def new_id() -> str:
    """Opaque ledger id (portfolio, asset, transaction, closed position)."""
    return uuid.uuid4().hex[:12]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _force_utc(v: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=dt.timezone.utc)
    return v.astimezone(dt.timezone.utc)


class LedgerModel(BaseModel):
    """Shared config: camelCase aliases, population by either name."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

# -------------------------------------------------
# TRANSACTION TYPE ENUM
# -------------------------------------------------

class TxType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    INCOME = "INCOME"

# -------------------------------------------------
# TRANSACTION
# -------------------------------------------------

class Transaction(LedgerModel):
    """
    A single ledger event. Never mutated by a disposal; FIFO consumption is
    derived by replaying disposals (see services/lots.py). totalCost is
    always quantity x pricePerCoin at creation or edit.
    """
    id: str = Field(default_factory=new_id)
    type: TxType
    quantity: Decimal
    price_per_coin: Decimal = Decimal("0")
    date: dt.date
    total_cost: Decimal = Decimal("0")
    tag: str = DEFAULT_TAG
    created_at: dt.datetime = Field(default_factory=utcnow)
    last_edited: Optional[dt.datetime] = None
    sequence: int = Field(
        default=0,
        description="Ledger-wide creation order; FIFO tie-break for equal dates.",
    )

    # FX snapshot captured at creation
    purchase_currency: Optional[str] = None
    exchange_rate_at_purchase: Optional[Dict[str, Decimal]] = None

    # BUY funded by spending another asset
    source_ticker: Optional[str] = None
    source_quantity: Optional[Decimal] = None

    # SELL proceeds
    proceeds: Optional[Decimal] = None
    proceeds_currency: Optional[str] = None
    destination_ticker: Optional[str] = None
    destination_quantity: Optional[Decimal] = None

    # Swap pair linkage (BUY <-> SELL)
    linked_buy_sell_transaction_id: Optional[str] = None
    transaction_pair_id: Optional[str] = None

    # TRANSFER
    destination_portfolio_id: Optional[str] = None
    transferred_from: Optional[str] = Field(
        default=None,
        description="Source portfolio id when this row is a transfer copy.",
    )
    transfer_id: Optional[str] = Field(
        default=None,
        description="Id of the source TRANSFER that made this copy.",
    )

    # Provenance
    deposit_source: Optional[str] = None
    withdrawal_destination: Optional[str] = None
    income_type: Optional[str] = None
    income_source: Optional[str] = None

    @field_validator("date", mode="before")
    def coerce_calendar_day(cls, v: Any) -> Any:
        """
        Stored dates are calendar days. Older documents carry full ISO
        timestamps ('2024-01-05T00:00:00.000Z'); keep only the day part.
        """
        if isinstance(v, dt.datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    @field_validator("created_at", "last_edited")
    def force_utc_timestamp(cls, v: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return _force_utc(v)

    @property
    def is_transfer_copy(self) -> bool:
        return self.transferred_from is not None

    @property
    def is_linked(self) -> bool:
        return self.linked_buy_sell_transaction_id is not None

# -------------------------------------------------
# ASSET
# -------------------------------------------------

class Asset(LedgerModel):
    """
    A position in one ticker. quantity, total_cost_basis and avg_buy_price
    are derived from 'transactions' by services.lots.recompute and must
    never be set by hand. Unknown fields (price history, notes, ...) are
    kept so documents round-trip.
    """
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_id)
    ticker: str
    name: Optional[str] = None
    quantity: Decimal = Decimal("0")
    current_price: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    asset_type: str = DEFAULT_ASSET_TYPE
    transactions: List[Transaction] = Field(default_factory=list)
    total_cost_basis: Decimal = Decimal("0")
    avg_buy_price: Decimal = Decimal("0")
    last_updated: Optional[dt.datetime] = None
    error: Optional[str] = None

    @field_validator("last_updated")
    def force_utc_timestamp(cls, v: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return _force_utc(v)

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return next((tx for tx in self.transactions if tx.id == transaction_id), None)

# -------------------------------------------------
# CLOSED POSITION
# -------------------------------------------------

class ClosedPosition(LedgerModel):
    """
    One FIFO match. entry_cost_basis is in the lot's own purchase currency
    (so it can be restored into the lot exactly); realized P&L is in
    display_currency.
    """
    id: str = Field(default_factory=new_id)
    ticker: str
    name: Optional[str] = None
    sell_transaction_id: str
    buy_transaction_id: str

    entry_date: dt.date
    entry_price: Decimal
    entry_quantity: Decimal
    entry_cost_basis: Decimal
    entry_currency: str = DEFAULT_CURRENCY
    entry_tag: Optional[str] = None

    exit_date: dt.date
    exit_price: Decimal
    exit_quantity: Decimal
    exit_proceeds: Decimal
    exit_currency: str = DEFAULT_CURRENCY
    exit_tag: Optional[str] = None

    realized_pnl: Decimal
    realized_pnl_percent: Decimal
    display_currency: str = DEFAULT_CURRENCY
    holding_period_days: int
    closed_at: dt.datetime = Field(default_factory=utcnow)

    @field_validator("entry_date", "exit_date", mode="before")
    def coerce_calendar_day(cls, v: Any) -> Any:
        if isinstance(v, dt.datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    @field_validator("closed_at")
    def force_utc_timestamp(cls, v: dt.datetime) -> dt.datetime:
        return _force_utc(v)

# -------------------------------------------------
# PORTFOLIO
# -------------------------------------------------

class Portfolio(LedgerModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_id)
    name: str
    color: str = PORTFOLIO_COLORS[0]
    assets: List[Asset] = Field(default_factory=list)
    closed_positions: List[ClosedPosition] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: dt.datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    def force_utc_timestamp(cls, v: dt.datetime) -> dt.datetime:
        return _force_utc(v)

    def find_asset(self, asset_id: str) -> Optional[Asset]:
        return next((a for a in self.assets if a.id == asset_id), None)

    def find_asset_by_ticker(self, ticker: str) -> Optional[Asset]:
        wanted = ticker.upper()
        return next((a for a in self.assets if a.ticker.upper() == wanted), None)


class PortfolioBundle(LedgerModel):
    """Export/import envelope."""
    portfolios: List[Portfolio]
    deleted_portfolios: List[Portfolio] = Field(default_factory=list)
    price_snapshots: Dict[str, Any] = Field(default_factory=dict)
    exported_at: dt.datetime = Field(default_factory=utcnow)

# -------------------------------------------------
# ENGINE RESULTS
# -------------------------------------------------

class ValidationResult(LedgerModel):
    """
    Outcome of a pre-flight check. Never raised: callers decide whether to
    abort, or to prompt the user and retry with confirmation.
    """
    valid: bool = True
    error: Optional[str] = None
    requires_confirmation: bool = False
    confirmation_message: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls()

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(valid=False, error=error)

    @classmethod
    def confirm(cls, message: str) -> "ValidationResult":
        return cls(requires_confirmation=True, confirmation_message=message)


class ChainLink(LedgerModel):
    """One hop of a swap chain: 'ticker' was sold for 'sold_for'."""
    ticker: str
    sold_for: str
    asset_id: str
    transaction: Transaction


class RemovalAction(str, Enum):
    NOOP = "NOOP"
    SIMPLE = "SIMPLE"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    TRANSFER_RETURN = "TRANSFER_RETURN"
    LINKED_PAIR = "LINKED_PAIR"
    LEGACY_BUY = "LEGACY_BUY"
    SELL_WITH_PROCEEDS = "SELL_WITH_PROCEEDS"
    PROCEEDS_ASSET = "PROCEEDS_ASSET"
    ASSET = "ASSET"


class RemovalPlan(LedgerModel):
    """
    What removing a transaction (or an asset) would do, computed without
    mutating anything. 'effects' lists the cascade in plain words.
    """
    action: RemovalAction
    validation: ValidationResult = Field(default_factory=ValidationResult)
    effects: List[str] = Field(default_factory=list)

    @property
    def requires_confirmation(self) -> bool:
        return self.validation.requires_confirmation


class MutationResult(LedgerModel):
    """
    Result of any mutating engine call. When 'applied' is False the
    portfolios are the caller's input, untouched.
    """
    portfolios: List[Portfolio]
    applied: bool = True
    validation: ValidationResult = Field(default_factory=ValidationResult)
    warnings: List[str] = Field(default_factory=list)
    created_ids: List[str] = Field(default_factory=list)

    @classmethod
    def declined(cls, portfolios: List[Portfolio], validation: ValidationResult) -> "MutationResult":
        return cls(portfolios=portfolios, applied=False, validation=validation)

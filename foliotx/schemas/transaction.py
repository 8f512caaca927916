"""
foliotx/schemas/transaction.py

Request bodies for the transaction, asset and portfolio endpoints.
Validation here is structural only (positive quantities, non-negative
prices, known portfolio names); balance and chain rules live in
services/validation.py because they depend on ledger state.

- DepositCreate / IncomeCreate / BuyCreate: acquisitions by ticker
- WithdrawalCreate / TransferCreate: disposals from an existing asset
- SwapCreate: spend one asset to buy another (linked SELL + BUY)
- TransactionUpdate: partial edit of quantity/price/date/tag
- PortfolioCreate / PortfolioRename: portfolio management
- PriceQuote: result of the external price lookup, merged into an asset
"""

import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from foliotx.schemas.ledger import LedgerModel

# -------------------------------------------------
# CUSTOM VALIDATORS
# -------------------------------------------------

def validate_positive_quantity(value: Decimal) -> Decimal:
    """Ledger quantities are strictly positive; direction comes from the type."""
    if value <= 0:
        raise ValueError("Quantity must be greater than zero.")
    return value


def validate_non_negative_amount(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is not None and value < 0:
        raise ValueError("Amount cannot be negative.")
    return value


def validate_ticker(value: str) -> str:
    value = value.strip().upper()
    if not value:
        raise ValueError("Ticker cannot be empty.")
    return value

# -------------------------------------------------
# ACQUISITIONS
# -------------------------------------------------

class AcquisitionBase(LedgerModel):
    ticker: str
    quantity: Decimal
    date: dt.date
    tag: Optional[str] = None
    name: Optional[str] = None
    currency: Optional[str] = Field(
        default=None,
        description="Purchase currency; detected from the ticker when omitted.",
    )

    @field_validator("ticker")
    def check_ticker(cls, v: str) -> str:
        return validate_ticker(v)

    @field_validator("quantity")
    def check_quantity(cls, v: Decimal) -> Decimal:
        return validate_positive_quantity(v)


class DepositCreate(AcquisitionBase):
    """External funds entering the portfolio at their stated cost."""
    price_per_coin: Decimal = Decimal("0")
    deposit_source: Optional[str] = None

    @field_validator("price_per_coin")
    def check_price(cls, v: Decimal) -> Decimal:
        return validate_non_negative_amount(v)


class IncomeCreate(AcquisitionBase):
    """Staking rewards, dividends, airdrops. Cost basis is zero unless supplied."""
    price_per_coin: Decimal = Decimal("0")
    income_type: Optional[str] = None
    income_source: Optional[str] = None

    @field_validator("price_per_coin")
    def check_price(cls, v: Decimal) -> Decimal:
        return validate_non_negative_amount(v)


class BuyCreate(AcquisitionBase):
    """Purchase with funds not tracked in the ledger."""
    price_per_coin: Decimal

    @field_validator("price_per_coin")
    def check_price(cls, v: Decimal) -> Decimal:
        return validate_non_negative_amount(v)

# -------------------------------------------------
# DISPOSALS
# -------------------------------------------------

class WithdrawalCreate(LedgerModel):
    asset_id: str
    quantity: Decimal
    date: dt.date
    tag: Optional[str] = None
    withdrawal_destination: Optional[str] = None

    @field_validator("quantity")
    def check_quantity(cls, v: Decimal) -> Decimal:
        return validate_positive_quantity(v)


class TransferCreate(LedgerModel):
    asset_id: str
    quantity: Decimal
    destination_portfolio_id: str
    date: dt.date
    tag: Optional[str] = None

    @field_validator("quantity")
    def check_quantity(cls, v: Decimal) -> Decimal:
        return validate_positive_quantity(v)


class SwapCreate(LedgerModel):
    """
    Spend 'source_quantity' of a held asset to receive 'destination_quantity'
    of another. 'source_price' defaults to the source asset's current price.
    """
    source_ticker: str
    source_quantity: Decimal
    destination_ticker: str
    destination_quantity: Decimal
    date: dt.date
    tag: Optional[str] = None
    source_price: Optional[Decimal] = None
    destination_name: Optional[str] = None

    @field_validator("source_ticker", "destination_ticker")
    def check_ticker(cls, v: str) -> str:
        return validate_ticker(v)

    @field_validator("source_quantity", "destination_quantity")
    def check_quantity(cls, v: Decimal) -> Decimal:
        return validate_positive_quantity(v)

    @field_validator("source_price")
    def check_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return validate_non_negative_amount(v)

# -------------------------------------------------
# EDIT
# -------------------------------------------------

class TransactionUpdate(LedgerModel):
    """Partial update. totalCost is always re-derived, never accepted."""
    quantity: Optional[Decimal] = None
    price_per_coin: Optional[Decimal] = None
    date: Optional[dt.date] = None
    tag: Optional[str] = None

    @field_validator("quantity")
    def check_quantity(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None:
            return validate_positive_quantity(v)
        return v

    @field_validator("price_per_coin")
    def check_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return validate_non_negative_amount(v)

# -------------------------------------------------
# PORTFOLIOS & PRICES
# -------------------------------------------------

class PortfolioCreate(LedgerModel):
    name: str

    @field_validator("name")
    def check_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Portfolio name cannot be empty.")
        return v


class PortfolioRename(PortfolioCreate):
    pass


class PriceQuote(LedgerModel):
    """
    What the external price lookup returned for an asset. 'error' set means
    the lookup failed; the asset keeps its last price and is flagged.
    """
    price: Optional[Decimal] = None
    display_name: Optional[str] = None
    currency: Optional[str] = None
    error: Optional[str] = None

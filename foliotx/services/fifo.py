"""
foliotx/services/fifo.py

FIFO cost-basis resolver. Given an asset and a quantity being disposed of on
a date, works out which acquisition lots the disposal consumes (oldest
first, creation order among equal dates), the cost basis that removes, and
optionally one ClosedPosition per lot touched.

The lots a new disposal sees are the asset's acquisitions minus everything
earlier disposals (dated on or before the new one) already consumed, see
services/lots.open_lots.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_DOWN
from typing import Iterable, List, Optional

from foliotx.constants import PNL_PRECISION, WORKING_CURRENCY
from foliotx.schemas.ledger import Asset, ClosedPosition, Transaction
from foliotx.services.currency import RateMap, convert
from foliotx.services.lots import LotSlice, consume_lots, open_lots

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class FifoResult:
    cost_basis: Decimal = ZERO
    cost_basis_converted: Decimal = ZERO
    slices: List[LotSlice] = field(default_factory=list)
    closed_positions: List[ClosedPosition] = field(default_factory=list)
    unmatched_quantity: Decimal = ZERO

    @property
    def shortfall(self) -> bool:
        """Disposal asked for more than the lots on record hold."""
        return self.unmatched_quantity > 0


def lot_currency(asset: Asset, lot: Transaction) -> str:
    return (lot.purchase_currency or asset.currency).upper()


def resolve_fifo(
    asset: Asset,
    quantity: Decimal,
    disposal_date: date,
    sell_transaction: Optional[Transaction] = None,
    exit_price: Optional[Decimal] = None,
    exit_currency: Optional[str] = None,
    working_currency: str = WORKING_CURRENCY,
    rates: Optional[RateMap] = None,
    exclude_ids: Iterable[str] = (),
) -> FifoResult:
    """
    Steps:
      1) Rebuild the open lots as of 'disposal_date'.
      2) Consume them oldest-first, prorating each lot's cost by the share
         of its original quantity taken.
      3) Convert each slice's cost to 'working_currency' through the FX
         snapshot stamped on the lot (or 'rates' / the fallback map).
      4) If 'sell_transaction' is given, emit a ClosedPosition per slice.

    A quantity larger than the open lots is matched as far as it goes; the
    rest is reported in 'unmatched_quantity' and no closed position is
    made up for it.
    """
    lots = open_lots(asset.transactions, as_of=disposal_date, exclude_ids=exclude_ids)
    slices, unmatched = consume_lots(lots, quantity)
    result = FifoResult(slices=slices, unmatched_quantity=unmatched)

    exit_currency = (exit_currency or asset.currency).upper()
    for piece in slices:
        lot = piece.transaction
        currency = lot_currency(asset, lot)
        converted = convert(piece.cost, currency, working_currency, lot.exchange_rate_at_purchase or rates)
        result.cost_basis += piece.cost
        result.cost_basis_converted += converted

        if sell_transaction is None:
            continue
        price = exit_price if exit_price is not None else sell_transaction.price_per_coin
        proceeds = piece.quantity * price
        proceeds_converted = convert(proceeds, exit_currency, working_currency, rates)
        pnl = proceeds_converted - converted
        pnl_percent = (pnl / converted * 100) if converted else ZERO
        result.closed_positions.append(ClosedPosition(
            ticker=asset.ticker,
            name=asset.name,
            sell_transaction_id=sell_transaction.id,
            buy_transaction_id=lot.id,
            entry_date=lot.date,
            entry_price=lot.price_per_coin,
            entry_quantity=piece.quantity,
            entry_cost_basis=piece.cost,
            entry_currency=currency,
            entry_tag=lot.tag,
            exit_date=disposal_date,
            exit_price=price,
            exit_quantity=piece.quantity,
            exit_proceeds=proceeds,
            exit_currency=exit_currency,
            exit_tag=sell_transaction.tag,
            realized_pnl=pnl.quantize(PNL_PRECISION, rounding=ROUND_HALF_DOWN),
            realized_pnl_percent=pnl_percent.quantize(PNL_PRECISION, rounding=ROUND_HALF_DOWN),
            display_currency=working_currency,
            holding_period_days=(disposal_date - lot.date).days,
        ))

    if result.shortfall:
        logger.warning(
            f"[FIFO] {asset.ticker}: disposing {quantity} but only "
            f"{quantity - unmatched} is on record; {unmatched} left unmatched"
        )
    logger.debug(
        f"[FIFO] {asset.ticker}: {quantity} over {len(slices)} lot(s), "
        f"cost basis {result.cost_basis}"
    )
    return result

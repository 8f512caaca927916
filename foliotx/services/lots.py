"""
foliotx/services/lots.py

Lot accounting primitives. Everything here is pure: it reads a transaction
list and returns numbers or new objects, never mutating its input.

1) recompute(): the single source of truth for an asset's aggregates.
2) with_transactions(): replace an asset's transaction list and recompute.
3) open_lots() / consume_lots(): FIFO replay of disposals over acquisitions.
   Acquisition rows are never edited by a disposal, so the remaining size of
   each lot is always derived, never stored. reprice_disposals() re-runs
   the replay after a lot is edited or removed under later disposals.
4) balance helpers used by validation (balance on a date, running balance).
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from foliotx.constants import ACQUISITION_TYPES, DISPOSAL_TYPES
from foliotx.schemas.ledger import Asset, Transaction, TxType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class Position(NamedTuple):
    quantity: Decimal
    total_cost_basis: Decimal
    avg_buy_price: Decimal


@dataclass
class OpenLot:
    """An acquisition with whatever is left of it after earlier disposals."""
    transaction: Transaction
    remaining_quantity: Decimal
    remaining_cost: Decimal


@dataclass
class LotSlice:
    """The part of one lot consumed by one disposal."""
    transaction: Transaction
    quantity: Decimal
    cost: Decimal


def is_acquisition(tx: Transaction) -> bool:
    return tx.type.value in ACQUISITION_TYPES


def is_disposal(tx: Transaction) -> bool:
    return tx.type.value in DISPOSAL_TYPES


def ledger_order(tx: Transaction) -> Tuple[date, int]:
    """(date, sequence): oldest first, creation order among equal dates."""
    return (tx.date, tx.sequence)


# ------------------------------------------------------------------------------
# Aggregates
# ------------------------------------------------------------------------------
def recompute(transactions: Iterable[Transaction]) -> Position:
    """
    quantity   = sum(acquired qty) - sum(disposed qty)
    cost basis = sum(acquired cost) - sum(disposed cost)
    avg price  = cost basis / quantity, or 0 when quantity <= 0
    """
    quantity = ZERO
    cost = ZERO
    for tx in transactions:
        if is_acquisition(tx):
            quantity += tx.quantity
            cost += tx.total_cost
        elif is_disposal(tx):
            quantity -= tx.quantity
            cost -= tx.total_cost
    avg = cost / quantity if quantity > 0 else ZERO
    return Position(quantity, cost, avg)


def with_transactions(asset: Asset, transactions: Sequence[Transaction]) -> Asset:
    """
    Return a copy of 'asset' holding 'transactions' (order kept as given)
    with quantity, cost basis and average price recomputed.
    """
    position = recompute(transactions)
    return asset.model_copy(update={
        "transactions": list(transactions),
        "quantity": position.quantity,
        "total_cost_basis": position.total_cost_basis,
        "avg_buy_price": position.avg_buy_price,
    })


def is_drained(asset: Asset) -> bool:
    """An asset with nothing left is dropped from its portfolio."""
    return not asset.transactions or asset.quantity == 0


# ------------------------------------------------------------------------------
# FIFO replay
# ------------------------------------------------------------------------------
def consume_lots(lots: List[OpenLot], quantity: Decimal) -> Tuple[List[LotSlice], Decimal]:
    """
    Walk 'lots' oldest-first, taking up to 'quantity'. The lots are reduced
    in place (callers pass their own working list). Returns the slices taken
    and whatever quantity could not be matched.
    """
    slices = []
    remaining = quantity
    for lot in lots:
        if remaining <= 0:
            break
        if lot.remaining_quantity <= 0:
            continue
        take = min(remaining, lot.remaining_quantity)
        if take == lot.remaining_quantity:
            # Drain exactly so no rounding residue is left on the lot
            cost = lot.remaining_cost
        elif lot.transaction.quantity:
            cost = lot.transaction.total_cost * take / lot.transaction.quantity
        else:
            cost = ZERO
        slices.append(LotSlice(lot.transaction, take, cost))
        lot.remaining_quantity -= take
        lot.remaining_cost -= cost
        remaining -= take
    return slices, remaining


def open_lots(
    transactions: Iterable[Transaction],
    as_of: Optional[date] = None,
    exclude_ids: Iterable[str] = (),
) -> List[OpenLot]:
    """
    Acquisition lots still (partly) open after replaying every disposal in
    ledger order. With 'as_of', only disposals dated on or before that day
    are replayed. Transactions whose id is in 'exclude_ids' are ignored
    entirely, which lets callers ask "what would the lots look like without
    this disposal".
    """
    excluded = set(exclude_ids)
    kept = sorted((tx for tx in transactions if tx.id not in excluded), key=ledger_order)
    lots = [
        OpenLot(tx, tx.quantity, tx.total_cost)
        for tx in kept if is_acquisition(tx)
    ]
    for tx in kept:
        if not is_disposal(tx):
            continue
        if as_of is not None and tx.date > as_of:
            continue
        _, unmatched = consume_lots(lots, tx.quantity)
        if unmatched > 0:
            logger.warning(
                f"[Lots] Disposal {tx.id} ({tx.type.value}) exceeds lots on record by {unmatched}"
            )
    return [lot for lot in lots if lot.remaining_quantity > 0]


def disposal_costs(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """FIFO cost of every disposal, replaying all of them in ledger order."""
    ordered = sorted(transactions, key=ledger_order)
    lots = [OpenLot(tx, tx.quantity, tx.total_cost) for tx in ordered if is_acquisition(tx)]
    costs = {}
    for tx in ordered:
        if is_disposal(tx):
            slices, _ = consume_lots(lots, tx.quantity)
            costs[tx.id] = sum((piece.cost for piece in slices), ZERO)
    return costs


def reprice_disposals(
    before: Sequence[Transaction],
    after: Sequence[Transaction],
) -> Tuple[List[Transaction], List[Transaction]]:
    """
    'after' is 'before' with a transaction edited or removed. Any disposal
    whose FIFO cost differs between the two replays has a stale totalCost.

    WITHDRAWALs are re-priced in place. SELL and TRANSFER rows are left
    alone because their cost also lives in closed positions or in another
    portfolio's lots; they come back as the second element so the caller
    can refuse the change.

    Returns (after with re-priced WITHDRAWALs, stale SELL/TRANSFER rows).
    """
    old = disposal_costs(before)
    new = disposal_costs(after)
    transactions = []
    stale = []
    repriced = 0
    for tx in after:
        cost = new.get(tx.id)
        if cost is None or (tx.id in old and old[tx.id] == cost):
            transactions.append(tx)
        elif tx.type == TxType.WITHDRAWAL:
            price = cost / tx.quantity if tx.quantity else ZERO
            transactions.append(tx.model_copy(update={"total_cost": cost, "price_per_coin": price}))
            repriced += 1
        else:
            transactions.append(tx)
            stale.append(tx)
    if repriced:
        logger.info(f"[Lots] Re-priced {repriced} withdrawal(s) after a lot change")
    return transactions, stale


# ------------------------------------------------------------------------------
# Balance timeline
# ------------------------------------------------------------------------------
def _signed(tx: Transaction) -> Decimal:
    if is_acquisition(tx):
        return tx.quantity
    if is_disposal(tx):
        return -tx.quantity
    return ZERO


def balance_at(transactions: Iterable[Transaction], as_of: date) -> Decimal:
    """Quantity held at the end of 'as_of'."""
    return sum((_signed(tx) for tx in transactions if tx.date <= as_of), ZERO)


def _end_of_day_balances(transactions: Iterable[Transaction]) -> List[Tuple[date, Decimal]]:
    running = ZERO
    balances = []
    for tx in sorted(transactions, key=ledger_order):
        running += _signed(tx)
        if balances and balances[-1][0] == tx.date:
            balances[-1] = (tx.date, running)
        else:
            balances.append((tx.date, running))
    return balances


def available_balance(transactions: Sequence[Transaction], as_of: date) -> Decimal:
    """
    The most that can be disposed of on 'as_of' without any later day going
    negative: the minimum end-of-day balance from 'as_of' onwards.
    """
    available = balance_at(transactions, as_of)
    for day, balance in _end_of_day_balances(transactions):
        if day >= as_of:
            available = min(available, balance)
    return available


def first_negative_balance(transactions: Iterable[Transaction]) -> Optional[Tuple[date, Decimal]]:
    """(day, balance) of the first day the running balance drops below zero."""
    for day, balance in _end_of_day_balances(transactions):
        if balance < 0:
            return day, balance
    return None


def next_sequence(transaction_lists: Iterable[Iterable[Transaction]]) -> int:
    """One past the highest sequence number in use."""
    highest = 0
    for transactions in transaction_lists:
        for tx in transactions:
            highest = max(highest, tx.sequence)
    return highest + 1

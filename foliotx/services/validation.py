"""
foliotx/services/validation.py

Pre-flight checks run before any ledger mutation or removal. Every check
returns a ValidationResult and none of them raise: the caller decides
whether to stop, or to show the confirmation text and retry.

Removal checks, cheapest first:
 (a) the transaction exists on the named asset
 (b) it is not a transfer copy whose TRANSFER is still on record at the
     source (a copy whose source portfolio is gone is a plain lot)
 (c) a TRANSFER's destination still holds what was transferred
 (d) no downstream swap chain hangs off the proceeds being undone
 (e) no later SELL or TRANSFER took its cost from the lots being changed
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from foliotx.schemas.ledger import Asset, Portfolio, Transaction, TxType, ValidationResult
from foliotx.services.chain import describe_chain, find_chain, reversal_steps, sells_into
from foliotx.services.currency import base_symbol
from foliotx.services.lots import (
    available_balance,
    first_negative_balance,
    is_acquisition,
    ledger_order,
    reprice_disposals,
)

logger = logging.getLogger(__name__)


def _find_portfolio(portfolios: Sequence[Portfolio], portfolio_id: Optional[str]) -> Optional[Portfolio]:
    return next((p for p in portfolios if p.id == portfolio_id), None)


# ------------------------------------------------------------------------------
# Mutations
# ------------------------------------------------------------------------------
def validate_disposal(asset: Optional[Asset], quantity: Decimal, day: date, ticker: str = "") -> ValidationResult:
    """
    A disposal of 'quantity' on 'day' must be covered on that day and must
    not push any later day negative.
    """
    ticker = asset.ticker if asset else ticker
    if asset is None:
        return ValidationResult.fail(f"You do not hold any {ticker} in this portfolio.")
    available = available_balance(asset.transactions, day)
    if available < quantity:
        return ValidationResult.fail(
            f"Insufficient {ticker} on {day.isoformat()}:\n"
            f"  Required: {quantity} {ticker}\n"
            f"  Available: {max(available, Decimal('0'))} {ticker}"
        )
    return ValidationResult.ok()


def validate_transfer(
    portfolios: Sequence[Portfolio],
    source: Portfolio,
    asset: Optional[Asset],
    quantity: Decimal,
    day: date,
    destination_portfolio_id: str,
) -> ValidationResult:
    if destination_portfolio_id == source.id:
        return ValidationResult.fail("Source and destination portfolio must be different.")
    if _find_portfolio(portfolios, destination_portfolio_id) is None:
        return ValidationResult.fail("The destination portfolio does not exist.")
    return validate_disposal(asset, quantity, day)


def validate_swap(
    source_asset: Optional[Asset],
    source_ticker: str,
    source_quantity: Decimal,
    destination_ticker: str,
    day: date,
) -> ValidationResult:
    if base_symbol(source_ticker) == base_symbol(destination_ticker):
        return ValidationResult.fail("Cannot swap an asset into itself.")
    return validate_disposal(source_asset, source_quantity, day, ticker=source_ticker)


def validate_balance_after(asset: Asset, transactions: List[Transaction], action: str) -> ValidationResult:
    """The asset's running balance must never dip below zero after 'action'."""
    negative = first_negative_balance(transactions)
    if negative is None:
        return ValidationResult.ok()
    day, balance = negative
    return ValidationResult.fail(
        f"Cannot {action}: {asset.ticker} would go negative ({balance}) on {day.isoformat()}.\n\n"
        f"Later sales, withdrawals or transfers depend on this quantity. "
        f"Please resolve those transactions first."
    )


def validate_cost_basis_after(asset: Asset, before: Sequence[Transaction], after: Sequence[Transaction],
                              action: str) -> ValidationResult:
    """
    Check (e). Later WITHDRAWALs are simply re-priced, but a SELL or
    TRANSFER keeps the cost it was created with, so a change that would
    move it is refused.
    """
    _, stale = reprice_disposals(before, after)
    if not stale:
        return ValidationResult.ok()
    first = min(stale, key=ledger_order)
    return ValidationResult.fail(
        f"Cannot {action}: the cost basis of the {first.type.value} of {first.quantity} {asset.ticker} "
        f"on {first.date.isoformat()} would change.\n\n"
        f"That {first.type.value} took its cost from these lots. Delete it first, then try again."
    )


def validate_edit(portfolios: Sequence[Portfolio], portfolio_id: str, asset: Asset, tx: Transaction) -> ValidationResult:
    if tx.transferred_from:
        origin = backing_transfer(portfolios, portfolio_id, asset, tx)
        if origin is not None:
            return _transfer_copy_redirect(origin[0], asset, "edited")
    if tx.type == TxType.TRANSFER:
        return ValidationResult.fail(
            "TRANSFER transactions cannot be edited. Delete the transfer and create it again."
        )
    if tx.linked_buy_sell_transaction_id or tx.transaction_pair_id:
        return ValidationResult.fail(
            "This transaction is one side of a swap. Delete the swap and create it again."
        )
    return ValidationResult.ok()


# ------------------------------------------------------------------------------
# Removals
# ------------------------------------------------------------------------------
def backing_transfer(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    asset: Asset,
    copy: Transaction,
) -> Optional[Tuple[Portfolio, Asset, Transaction]]:
    """
    The TRANSFER a copy in 'portfolio_id' came from, as (source portfolio,
    source asset, TRANSFER), or None when the source portfolio is gone or
    no longer records it. Copies made before transfer_id existed match any
    TRANSFER of the same ticker into this portfolio.
    """
    source = _find_portfolio(portfolios, copy.transferred_from)
    if source is None:
        return None
    for source_asset in source.assets:
        for tx in source_asset.transactions:
            if tx.type != TxType.TRANSFER or tx.destination_portfolio_id != portfolio_id:
                continue
            if copy.transfer_id:
                if tx.id == copy.transfer_id:
                    return source, source_asset, tx
            elif base_symbol(source_asset.ticker) == base_symbol(asset.ticker):
                return source, source_asset, tx
    return None


def _transfer_copy_redirect(source: Portfolio, asset: Asset, verb: str) -> ValidationResult:
    return ValidationResult.fail(
        f"This {asset.ticker} transaction was copied here by a transfer from \"{source.name}\" "
        f"and cannot be {verb} on its own.\n\n"
        f"Deleting the TRANSFER in the source portfolio will automatically remove this copied transaction."
    )


def validate_transaction_removal(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    asset: Optional[Asset],
    transaction_id: str,
) -> ValidationResult:
    """
    Checks (a) and (b), plus the balance and cost basis checks for plain
    acquisitions and WITHDRAWALs.
    """
    if asset is None:
        return ValidationResult.fail("Asset not found.")
    tx = asset.find_transaction(transaction_id)
    if tx is None:
        return ValidationResult.fail(f"Transaction not found on {asset.ticker}.")
    if tx.transferred_from:
        origin = backing_transfer(portfolios, portfolio_id, asset, tx)
        if origin is not None:
            return _transfer_copy_redirect(origin[0], asset, "deleted")
    if tx.type == TxType.WITHDRAWAL or (is_acquisition(tx) and not tx.linked_buy_sell_transaction_id):
        remaining = [t for t in asset.transactions if t.id != transaction_id]
        check = validate_balance_after(asset, remaining, "delete this transaction")
        if not check.valid:
            return check
        return validate_cost_basis_after(asset, asset.transactions, remaining, "delete this transaction")
    return ValidationResult.ok()


def validate_transfer_deletion(asset: Asset, tx: Transaction, portfolios: Sequence[Portfolio]) -> ValidationResult:
    """Check (c): the destination must still hold what was transferred."""
    if not tx.destination_portfolio_id:
        return ValidationResult.fail(
            "Cannot delete this TRANSFER transaction: Missing destination portfolio information."
        )
    destination = _find_portfolio(portfolios, tx.destination_portfolio_id)
    if destination is None:
        return ValidationResult.fail(
            "The destination portfolio no longer exists.\n\nThis transfer cannot be reversed."
        )
    destination_asset = destination.find_asset_by_ticker(asset.ticker)
    if destination_asset is None:
        return ValidationResult.fail(
            f"{asset.ticker} no longer exists in \"{destination.name}\".\n\n"
            f"The asset may have been sold or withdrawn. Please resolve the transaction chain first."
        )
    available = available_balance(destination_asset.transactions, tx.date)
    if available < tx.quantity:
        return ValidationResult.fail(
            f"Insufficient quantity in \"{destination.name}\":\n"
            f"  Required: {tx.quantity} {asset.ticker}\n"
            f"  Available: {max(available, Decimal('0'))} {asset.ticker}\n\n"
            f"Some of the transferred assets may have been sold or withdrawn.\n"
            f"Please resolve those transactions first."
        )
    return ValidationResult.ok()


def _chain_error(sold_ticker: str, sold_quantity, sold_on: date, proceeds_ticker: str, chain) -> str:
    lines = [
        f"The proceeds \"{proceeds_ticker}\" have been sold in a transaction chain:",
        "",
        f"  {sold_ticker} → {describe_chain(chain)}",
        "",
        "Transactions in this chain:",
        f"  • {sold_quantity} {sold_ticker} sold for {proceeds_ticker} on {sold_on.isoformat()}",
    ]
    lines += [
        f"  • {link.transaction.quantity} {link.ticker} sold for {link.sold_for} on {link.transaction.date.isoformat()}"
        for link in chain
    ]
    lines += [
        "",
        "Deleting this SELL transaction would corrupt your P&L calculations.",
        "",
        "To delete this transaction, you must first reverse the sales in ORDER:",
    ]
    lines += reversal_steps(chain)
    lines.append(f"{len(chain) + 1}. Then you can delete this {sold_ticker}→{proceeds_ticker} transaction")
    return "\n".join(lines)


def validate_sell_with_proceeds_deletion(asset: Asset, tx: Transaction, assets: Sequence[Asset]) -> ValidationResult:
    """
    Check (d) for a SELL whose proceeds went into another asset:
      - proceeds asset gone: allowed, but only with confirmation
      - proceeds sold on further: rejected with the hops to undo first
      - otherwise: one unconsumed hop, allowed with confirmation
    """
    if not tx.proceeds_currency:
        return ValidationResult.ok()
    proceeds_ticker = base_symbol(tx.proceeds_currency)
    proceeds_asset = next((a for a in assets if base_symbol(a.ticker) == proceeds_ticker), None)
    if proceeds_asset is None:
        return ValidationResult.confirm(
            "The proceeds from this SELL transaction no longer exist in your portfolio.\n\n"
            "Deleting this transaction may cause incorrect P&L calculations and affect your closed positions.\n\n"
            "It's recommended to keep this transaction for accurate records.\n\n"
            "Do you still want to delete it?"
        )
    chain = find_chain(proceeds_ticker, assets, visited=frozenset({base_symbol(asset.ticker)}))
    if chain:
        return ValidationResult.fail(
            _chain_error(asset.ticker, tx.quantity, tx.date, proceeds_asset.ticker, chain)
        )
    return ValidationResult.confirm(
        f"This will reverse the sale of {tx.quantity} {asset.ticker} for {proceeds_asset.ticker}:\n"
        f"- the {proceeds_asset.ticker} received will be removed\n"
        f"- the sold {asset.ticker} will be restored\n"
        f"- closed positions for this sale will be deleted\n\n"
        f"Do you want to continue?"
    )


def validate_linked_pair_deletion(
    buy_asset: Asset,
    buy: Transaction,
    sold_ticker: str,
    sold_quantity: Decimal,
    assets: Sequence[Asset],
) -> ValidationResult:
    """
    Undoing a swap removes the BUY from the destination, so the destination
    must not have been swapped onward and must still cover the quantity.
    """
    chain = find_chain(buy_asset.ticker, assets, visited=frozenset({base_symbol(sold_ticker)}))
    if chain:
        return ValidationResult.fail(
            _chain_error(sold_ticker, sold_quantity, buy.date, buy_asset.ticker, chain)
        )
    remaining = [t for t in buy_asset.transactions if t.id != buy.id]
    return validate_balance_after(buy_asset, remaining, "delete this swap")


def validate_asset_removal(portfolios: Sequence[Portfolio], portfolio: Portfolio, asset: Asset) -> ValidationResult:
    """
    An asset whose lots were swapped onward cannot be deleted, nor one
    holding copies of a TRANSFER the source portfolio still records.
    """
    assets = portfolio.assets
    copies = [
        tx for tx in asset.transactions
        if tx.transferred_from and backing_transfer(portfolios, portfolio.id, asset, tx) is not None
    ]
    if copies:
        return ValidationResult.fail(
            f"\"{asset.ticker}\" holds {len(copies)} transaction(s) copied here by a transfer.\n\n"
            f"Delete the TRANSFER in the source portfolio first."
        )
    chain = find_chain(asset.ticker, assets)
    if not chain:
        return ValidationResult.ok()
    lines = [
        f"Cannot Delete: \"{asset.ticker}\" is part of a transaction chain:",
        "",
        f"  {describe_chain(chain)}",
        "",
        "Transactions in this chain:",
    ]
    lines += [
        f"  • {link.transaction.quantity} {link.ticker} sold for {link.sold_for} on {link.transaction.date.isoformat()}"
        for link in chain
    ]
    lines += ["", "Reverse these sales first, in ORDER:"]
    lines += reversal_steps(chain)
    lines.append(f"{len(chain) + 1}. Then you can delete {asset.ticker}")
    logger.info(f"[Validation] Asset removal blocked for {asset.ticker}: chain of {len(chain)} link(s)")
    return ValidationResult.fail("\n".join(lines))


def find_matching_sell(asset: Asset, tx: Transaction, assets: Sequence[Asset]) -> Optional[Tuple[Asset, Transaction]]:
    """
    For an unlinked acquisition: the unlinked SELL (anywhere in the
    portfolio) whose proceeds went into this ticker on the same day.
    Returns (sell_asset, sell_tx) or None.
    """
    for sell_asset, sell in sells_into(asset.ticker, assets):
        if sell.linked_buy_sell_transaction_id:
            continue
        if sell.date == tx.date:
            return sell_asset, sell
    return None

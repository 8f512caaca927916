"""
foliotx/services/reversal.py

The reversal / deletion engine: the inverse of services/transaction.py.

Removing anything is a two-step affair:
  1) plan_*_removal() works out, without touching the ledger, what the
     removal would do: which rule applies, whether validation passes, and
     the cascade in plain words for the confirmation prompt.
  2) remove_*() re-plans and, if the plan is valid (and confirmed where
     it asks for it), produces the new ledger.

Rules by transaction type and linkage:
  - WITHDRAWAL: drop it and recompute
  - TRANSFER: drop it at the source, take the lots back out of the destination
  - transfer copy whose TRANSFER went with its drained source asset: send
    every copy of that transfer back, rebuilding the source asset
  - linked BUY/SELL: drop both legs and the sale's closed positions
  - legacy BUY (source_ticker, no link): drop it, re-deposit the spent source
  - unlinked SELL with proceeds: drop it and the proceeds asset
  - acquisition that is itself proceeds of a SELL: only as the whole asset,
    cascading to the SELL
  - anything else: drop it and recompute

Lot restoration: a disposal that is still on its asset only needs to be
dropped (lots are never reduced in place). When a SELL's asset was drained
and removed, its closed positions carry the consumed slices, which are put
back into the BUY with the same id or re-created under that id.
"""

import logging
from decimal import Decimal
from typing import List, NamedTuple, Optional, Sequence, Tuple

from foliotx.constants import DEFAULT_TAG, RESTORATION_TAG
from foliotx.schemas.ledger import (
    Asset,
    ClosedPosition,
    MutationResult,
    Portfolio,
    RemovalAction,
    RemovalPlan,
    Transaction,
    TxType,
    ValidationResult,
    new_id,
)
from foliotx.services import validation
from foliotx.services.chain import sells_into
from foliotx.services.currency import base_symbol, is_cash_asset
from foliotx.services.lots import is_acquisition, ledger_order, reprice_disposals, with_transactions
from foliotx.services.transaction import (
    drop_asset,
    find_portfolio,
    new_asset,
    put_asset,
    replace_portfolio,
    sequence_for,
    unit_price,
)

logger = logging.getLogger(__name__)


class SwapPair(NamedTuple):
    """Both legs of a swap; a leg is None when its asset has since been removed."""
    buy_asset: Optional[Asset]
    buy: Optional[Transaction]
    sell_asset: Optional[Asset]
    sell: Optional[Transaction]
    sell_id: str


# ------------------------------------------------------------------------------
# Small helpers
# ------------------------------------------------------------------------------
def locate(portfolio: Portfolio, transaction_id: Optional[str]) -> Tuple[Optional[Asset], Optional[Transaction]]:
    """(asset, transaction) holding 'transaction_id' anywhere in the portfolio."""
    for asset in portfolio.assets:
        tx = asset.find_transaction(transaction_id) if transaction_id else None
        if tx is not None:
            return asset, tx
    return None, None


def swap_pair(portfolio: Portfolio, asset: Asset, tx: Transaction) -> SwapPair:
    partner_asset, partner = locate(portfolio, tx.linked_buy_sell_transaction_id)
    if tx.type == TxType.SELL:
        return SwapPair(partner_asset, partner, asset, tx, tx.id)
    return SwapPair(asset, tx, partner_asset, partner, tx.linked_buy_sell_transaction_id)


def positions_for_sale(portfolio: Portfolio, sell_id: str) -> List[ClosedPosition]:
    return [cp for cp in portfolio.closed_positions if cp.sell_transaction_id == sell_id]


def purge_closed_positions(portfolio: Portfolio, sell_id: str) -> Portfolio:
    kept = [cp for cp in portfolio.closed_positions if cp.sell_transaction_id != sell_id]
    return portfolio.model_copy(update={"closed_positions": kept})


def purge_orphaned_positions(portfolio: Portfolio, ticker: str) -> Portfolio:
    """Closed positions on 'ticker' whose SELL is gone from the portfolio."""
    live_ids = {tx.id for asset in portfolio.assets for tx in asset.transactions}
    kept = [
        cp for cp in portfolio.closed_positions
        if cp.ticker != ticker or cp.sell_transaction_id in live_ids
    ]
    dropped = len(portfolio.closed_positions) - len(kept)
    if dropped:
        logger.info(f"[Reversal] Purged {dropped} orphaned closed position(s) for {ticker}")
    return portfolio.model_copy(update={"closed_positions": kept})


def without_transaction(portfolio: Portfolio, asset_id: str, transaction_id: str) -> Portfolio:
    """
    Drop one transaction from an asset, re-price the WITHDRAWALs it shifts,
    and recompute. No-op if either is missing.
    """
    asset = portfolio.find_asset(asset_id)
    if asset is None or asset.find_transaction(transaction_id) is None:
        return portfolio
    remaining = [t for t in asset.transactions if t.id != transaction_id]
    remaining, _ = reprice_disposals(asset.transactions, remaining)
    return put_asset(portfolio, with_transactions(asset, remaining))


def _confirm(action: RemovalAction, header: str, effects: List[str]) -> RemovalPlan:
    message = header + "\n\n" + "\n".join(f"- {effect}" for effect in effects)
    return RemovalPlan(action=action, validation=ValidationResult.confirm(message), effects=effects)


# ------------------------------------------------------------------------------
# Lot restoration
# ------------------------------------------------------------------------------
def restore_lots(asset: Asset, positions: Sequence[ClosedPosition], sequence: int) -> Asset:
    """
    Put the slices recorded on 'positions' back into their lots: added to
    the acquisition with the matching id, or re-created under that id.
    """
    transactions = list(asset.transactions)
    for cp in positions:
        index = next((i for i, t in enumerate(transactions) if t.id == cp.buy_transaction_id), None)
        if index is not None:
            lot = transactions[index]
            quantity = lot.quantity + cp.entry_quantity
            cost = lot.total_cost + cp.entry_cost_basis
            transactions[index] = lot.model_copy(update={
                "quantity": quantity,
                "total_cost": cost,
                "price_per_coin": unit_price(cost, quantity),
            })
        else:
            transactions.append(Transaction(
                id=cp.buy_transaction_id,
                type=TxType.BUY,
                quantity=cp.entry_quantity,
                price_per_coin=unit_price(cp.entry_cost_basis, cp.entry_quantity),
                date=cp.entry_date,
                total_cost=cp.entry_cost_basis,
                tag=cp.entry_tag or DEFAULT_TAG,
                sequence=sequence,
                purchase_currency=cp.entry_currency,
            ))
    return with_transactions(asset, transactions)


def restore_spent_source(portfolio: Portfolio, buy: Transaction, positions: Sequence[ClosedPosition],
                         sequence: int, reason: str) -> Portfolio:
    """
    Give back what 'buy' was paid with when the paying SELL is no longer on
    record. Uses the sale's closed positions when there are any; otherwise
    (cash was spent, or a legacy purchase) re-deposits the spent quantity.
    """
    ticker = buy.source_ticker
    if not ticker or not buy.source_quantity:
        return portfolio
    target = portfolio.find_asset_by_ticker(ticker) or new_asset(ticker)
    if positions:
        restored = restore_lots(target, positions, sequence)
    else:
        quantity = buy.source_quantity
        cost = quantity if is_cash_asset(ticker) else buy.total_cost
        deposit = Transaction(
            type=TxType.DEPOSIT,
            quantity=quantity,
            price_per_coin=unit_price(cost, quantity),
            date=buy.date,
            total_cost=cost,
            tag=RESTORATION_TAG,
            sequence=sequence,
            purchase_currency=target.currency,
            exchange_rate_at_purchase=buy.exchange_rate_at_purchase,
            deposit_source=reason,
        )
        restored = with_transactions(target, target.transactions + [deposit])
    logger.info(f"[Reversal] Restored {buy.source_quantity} {ticker} ({reason})")
    return put_asset(portfolio, restored)


# ------------------------------------------------------------------------------
# Per-type reversal calculations (single portfolio in, portfolio out)
# ------------------------------------------------------------------------------
def reverse_withdrawal(portfolio: Portfolio, asset_id: str, transaction_id: str) -> Portfolio:
    """The asset disappears only if its remaining transactions net to zero."""
    return without_transaction(portfolio, asset_id, transaction_id)


def reverse_simple(portfolio: Portfolio, asset_id: str, transaction_id: str) -> Portfolio:
    updated = without_transaction(portfolio, asset_id, transaction_id)
    return purge_closed_positions(updated, transaction_id)


def take_transferred_lots(
    transactions: Sequence[Transaction],
    quantity: Decimal,
    source_portfolio_id: str,
) -> Tuple[List[Transaction], List[Transaction]]:
    """
    Take 'quantity' worth of acquisition lots out of a destination asset:
    copies from 'source_portfolio_id' first, then any other lot, oldest
    first within each group. A lot straddling the boundary is split.
    Returns (taken, kept).
    """
    lots = sorted((t for t in transactions if is_acquisition(t)), key=ledger_order)
    ordered = (
        [t for t in lots if t.transferred_from == source_portfolio_id]
        + [t for t in lots if t.transferred_from != source_portfolio_id]
    )
    taken = []
    left = {}
    remaining = quantity
    for lot in ordered:
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)
        cost = lot.total_cost if take == lot.quantity else lot.total_cost * take / lot.quantity
        taken.append(lot.model_copy(update={
            "quantity": take,
            "total_cost": cost,
            "price_per_coin": unit_price(cost, take),
        }))
        left[lot.id] = (lot.quantity - take, lot.total_cost - cost)
        remaining -= take

    kept = []
    for tx in transactions:
        if tx.id not in left:
            kept.append(tx)
            continue
        quantity_left, cost_left = left[tx.id]
        if quantity_left > 0:
            kept.append(tx.model_copy(update={
                "quantity": quantity_left,
                "total_cost": cost_left,
                "price_per_coin": unit_price(cost_left, quantity_left),
            }))
    return taken, kept


def reverse_transfer_destination(portfolio: Portfolio, ticker: str, quantity: Decimal,
                                 source_portfolio_id: str) -> Portfolio:
    asset = portfolio.find_asset_by_ticker(ticker)
    if asset is None:
        return portfolio
    _, kept = take_transferred_lots(asset.transactions, quantity, source_portfolio_id)
    kept, _ = reprice_disposals(asset.transactions, kept)
    return put_asset(portfolio, with_transactions(asset, kept))


def reverse_transfer_source(portfolio: Portfolio, asset_id: str, transfer: Transaction) -> Portfolio:
    return without_transaction(portfolio, asset_id, transfer.id)


def transfer_batch(asset: Asset, copy: Transaction) -> List[Transaction]:
    """Every copy in 'asset' made by the same TRANSFER as 'copy'."""
    if not copy.transfer_id:
        return [copy]
    return [tx for tx in asset.transactions if tx.transfer_id == copy.transfer_id]


def return_transferred_lots(portfolio: Portfolio, lots: Sequence[Transaction], template: Asset) -> Portfolio:
    """
    Put transfer copies back into their source portfolio as ordinary lots:
    into the asset holding that ticker, or into a rebuilt one (shaped like
    'template', the destination asset) when the transfer drained it.
    """
    restored = [lot.model_copy(update={"transferred_from": None, "transfer_id": None}) for lot in lots]
    target = portfolio.find_asset_by_ticker(template.ticker)
    if target is None:
        target = template.model_copy(update={"id": new_id(), "transactions": [], "error": None})
        logger.info(f"[Reversal] Rebuilt {target.ticker} in '{portfolio.name}' from {len(restored)} transferred lot(s)")
    return put_asset(portfolio, with_transactions(target, target.transactions + restored))


def reverse_transfer_return(source: Portfolio, destination: Portfolio, asset: Asset,
                            copy: Transaction) -> Tuple[Portfolio, Portfolio]:
    """
    Undo a transfer from the destination side, for when its TRANSFER left
    the source together with the drained source asset. Returns the updated
    (source, destination).
    """
    batch = transfer_batch(asset, copy)
    ids = {tx.id for tx in batch}
    remaining = [tx for tx in asset.transactions if tx.id not in ids]
    remaining, _ = reprice_disposals(asset.transactions, remaining)
    updated_destination = put_asset(destination, with_transactions(asset, remaining))
    return return_transferred_lots(source, batch, asset), updated_destination


def reverse_linked_pair(portfolio: Portfolio, pair: SwapPair, sequence: int) -> Portfolio:
    """Both legs go, and so do the closed positions of the sale."""
    updated = portfolio
    if pair.buy is not None:
        updated = without_transaction(updated, pair.buy_asset.id, pair.buy.id)
    if pair.sell is not None:
        updated = without_transaction(updated, pair.sell_asset.id, pair.sell.id)
    elif pair.buy is not None:
        updated = restore_spent_source(
            updated, pair.buy, positions_for_sale(portfolio, pair.sell_id), sequence,
            f"Restored from reversed {pair.buy_asset.ticker} swap",
        )
    return purge_closed_positions(updated, pair.sell_id)


def reverse_legacy_buy(portfolio: Portfolio, asset: Asset, buy: Transaction, sequence: int) -> Portfolio:
    updated = without_transaction(portfolio, asset.id, buy.id)
    return restore_spent_source(
        updated, buy, [], sequence, f"Restored from reversed {asset.ticker} purchase",
    )


def reverse_sell_with_proceeds(portfolio: Portfolio, asset: Asset, sell: Transaction) -> Portfolio:
    updated = without_transaction(portfolio, asset.id, sell.id)
    wanted = base_symbol(sell.proceeds_currency)
    proceeds = next((a for a in updated.assets if base_symbol(a.ticker) == wanted), None)
    if proceeds is not None:
        updated = drop_asset(updated, proceeds.id)
        updated = updated.model_copy(update={
            "closed_positions": [cp for cp in updated.closed_positions if cp.ticker != proceeds.ticker],
        })
    return purge_closed_positions(updated, sell.id)


def reverse_proceeds_asset(portfolio: Portfolio, asset: Asset, sell_asset: Asset, sell: Transaction) -> Portfolio:
    """The whole proceeds position goes, and with it the SELL that paid for it."""
    updated = drop_asset(portfolio, asset.id)
    updated = without_transaction(updated, sell_asset.id, sell.id)
    return purge_closed_positions(updated, sell.id)


# ------------------------------------------------------------------------------
# Transaction removal: plan, then apply
# ------------------------------------------------------------------------------
def _plan_transfer(portfolios: Sequence[Portfolio], portfolio: Portfolio, asset: Asset, tx: Transaction) -> RemovalPlan:
    check = validation.validate_transfer_deletion(asset, tx, portfolios)
    if not check.valid:
        return RemovalPlan(action=RemovalAction.TRANSFER, validation=check)
    destination = find_portfolio(portfolios, tx.destination_portfolio_id)
    return _confirm(RemovalAction.TRANSFER, f"Reverse the transfer of {tx.quantity} {asset.ticker}?", [
        f"{tx.quantity} {asset.ticker} returns to \"{portfolio.name}\"",
        f"the transferred lots are removed from \"{destination.name}\"",
    ])


def _plan_transfer_return(source: Portfolio, portfolio: Portfolio, asset: Asset, tx: Transaction) -> RemovalPlan:
    batch = transfer_batch(asset, tx)
    ids = {t.id for t in batch}
    remaining = [t for t in asset.transactions if t.id not in ids]
    check = validation.validate_balance_after(asset, remaining, "send these lots back")
    if check.valid:
        check = validation.validate_cost_basis_after(asset, asset.transactions, remaining, "send these lots back")
    if not check.valid:
        return RemovalPlan(action=RemovalAction.TRANSFER_RETURN, validation=check)
    quantity = sum((t.quantity for t in batch), Decimal("0"))
    return _confirm(
        RemovalAction.TRANSFER_RETURN,
        f"This {asset.ticker} lot came from a transfer out of \"{source.name}\", which no longer "
        f"records it. Deleting it will undo the transfer:",
        [
            f"{len(batch)} transferred lot(s), {quantity} {asset.ticker} in all, are removed from \"{portfolio.name}\"",
            f"{quantity} {asset.ticker} returns to \"{source.name}\" with its original dates and cost",
        ],
    )


def _plan_linked_pair(portfolio: Portfolio, asset: Asset, tx: Transaction) -> RemovalPlan:
    pair = swap_pair(portfolio, asset, tx)
    if pair.buy is not None:
        sold_ticker = pair.sell_asset.ticker if pair.sell else pair.buy.source_ticker or ""
        sold_quantity = pair.sell.quantity if pair.sell else pair.buy.source_quantity
        check = validation.validate_linked_pair_deletion(
            pair.buy_asset, pair.buy, sold_ticker, sold_quantity, portfolio.assets,
        )
        if not check.valid:
            return RemovalPlan(action=RemovalAction.LINKED_PAIR, validation=check)

    effects = []
    if pair.buy is not None:
        effects.append(f"the BUY of {pair.buy.quantity} {pair.buy_asset.ticker} is deleted")
    if pair.sell is not None:
        effects.append(f"the SELL of {pair.sell.quantity} {pair.sell_asset.ticker} is deleted")
    elif pair.buy is not None and pair.buy.source_ticker:
        effects.append(
            f"{pair.buy.source_quantity} {pair.buy.source_ticker} spent on this swap is restored "
            f"(its position had been closed)"
        )
    else:
        effects.append("the linked transaction could not be found; only this side is deleted")
    if pair.buy is None and pair.sell is not None:
        effects.append(f"the {pair.sell.proceeds_currency} received no longer exists and is not touched")
    closed = positions_for_sale(portfolio, pair.sell_id)
    if closed:
        effects.append(f"{len(closed)} closed position(s) from this swap are deleted")
    return _confirm(RemovalAction.LINKED_PAIR, "This transaction is one side of a swap. Deleting it will:", effects)


def plan_transaction_removal(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    asset_id: str,
    transaction_id: str,
) -> RemovalPlan:
    """
    Which reversal rule applies to this transaction, whether it may run,
    and what it would cascade to. Pure: nothing is changed.
    """
    portfolio = find_portfolio(portfolios, portfolio_id)
    if portfolio is None:
        return RemovalPlan(action=RemovalAction.NOOP, validation=ValidationResult.fail("Portfolio not found."))
    asset = portfolio.find_asset(asset_id)
    tx = asset.find_transaction(transaction_id) if asset else None

    check = validation.validate_transaction_removal(portfolios, portfolio_id, asset, transaction_id)
    if tx is None:
        return RemovalPlan(action=RemovalAction.NOOP, validation=check)
    if not check.valid:
        return RemovalPlan(action=RemovalAction.SIMPLE, validation=check)

    if tx.transferred_from:
        # Copies still backed by a TRANSFER were refused above
        source = find_portfolio(portfolios, tx.transferred_from)
        if source is not None:
            return _plan_transfer_return(source, portfolio, asset, tx)
    if tx.type == TxType.WITHDRAWAL:
        return RemovalPlan(action=RemovalAction.WITHDRAWAL,
                           effects=[f"{tx.quantity} {asset.ticker} returns to your holdings"])
    if tx.type == TxType.TRANSFER:
        return _plan_transfer(portfolios, portfolio, asset, tx)
    if tx.linked_buy_sell_transaction_id:
        return _plan_linked_pair(portfolio, asset, tx)
    if tx.type == TxType.BUY and tx.source_ticker:
        return _confirm(RemovalAction.LEGACY_BUY, f"Delete this {asset.ticker} purchase?", [
            f"the BUY of {tx.quantity} {asset.ticker} is deleted",
            f"{tx.source_quantity} {tx.source_ticker} spent on it is restored as a deposit",
        ])
    if tx.type == TxType.SELL and tx.proceeds_currency:
        check = validation.validate_sell_with_proceeds_deletion(asset, tx, portfolio.assets)
        effects = [
            f"the SELL of {tx.quantity} {asset.ticker} is deleted",
            f"the {tx.proceeds_currency} position received from it is deleted",
        ]
        return RemovalPlan(action=RemovalAction.SELL_WITH_PROCEEDS, validation=check, effects=effects)
    if is_acquisition(tx):
        match = validation.find_matching_sell(asset, tx, portfolio.assets)
        if match is not None:
            sell_asset, sell = match
            if len(asset.transactions) > 1:
                return RemovalPlan(action=RemovalAction.PROCEEDS_ASSET, validation=ValidationResult.fail(
                    f"This {asset.ticker} transaction is proceeds from selling {sell.quantity} "
                    f"{sell_asset.ticker} on {sell.date.isoformat()}.\n\n"
                    f"Delete the whole {asset.ticker} position instead; that reverses the sale."
                ))
            return _confirm(RemovalAction.PROCEEDS_ASSET,
                            f"\"{asset.ticker}\" is proceeds from an earlier sale. Deleting it will:", [
                                f"remove the {asset.ticker} position",
                                f"delete the SELL of {sell.quantity} {sell_asset.ticker} and restore it",
                                "delete the closed positions of that sale",
                            ])

    effects = [f"the {tx.type.value} of {tx.quantity} {asset.ticker} is deleted"]
    closed = positions_for_sale(portfolio, tx.id)
    if closed:
        return _confirm(RemovalAction.SIMPLE, f"Delete this {asset.ticker} sale?",
                        effects + [f"{len(closed)} closed position(s) are deleted"])
    return RemovalPlan(action=RemovalAction.SIMPLE, effects=effects)


def remove_transaction(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    asset_id: str,
    transaction_id: str,
    confirmed: bool = False,
) -> MutationResult:
    """
    Plan the removal and carry it out. Declines (returning 'portfolios'
    untouched) when validation fails, or when the plan needs confirmation
    and 'confirmed' is False.
    """
    plan = plan_transaction_removal(portfolios, portfolio_id, asset_id, transaction_id)
    if not plan.validation.valid or plan.action == RemovalAction.NOOP:
        return MutationResult.declined(list(portfolios), plan.validation)
    if plan.requires_confirmation and not confirmed:
        return MutationResult.declined(list(portfolios), plan.validation)

    portfolio = find_portfolio(portfolios, portfolio_id)
    asset = portfolio.find_asset(asset_id)
    tx = asset.find_transaction(transaction_id)
    sequence = sequence_for(portfolios)
    result = list(portfolios)

    if plan.action == RemovalAction.WITHDRAWAL:
        result = replace_portfolio(result, reverse_withdrawal(portfolio, asset.id, tx.id))
    elif plan.action == RemovalAction.TRANSFER:
        destination = find_portfolio(portfolios, tx.destination_portfolio_id)
        result = replace_portfolio(result, reverse_transfer_source(portfolio, asset.id, tx))
        result = replace_portfolio(result, reverse_transfer_destination(destination, asset.ticker, tx.quantity, portfolio.id))
    elif plan.action == RemovalAction.TRANSFER_RETURN:
        source = find_portfolio(portfolios, tx.transferred_from)
        updated_source, updated_destination = reverse_transfer_return(source, portfolio, asset, tx)
        result = replace_portfolio(result, updated_source)
        result = replace_portfolio(result, updated_destination)
    elif plan.action == RemovalAction.LINKED_PAIR:
        pair = swap_pair(portfolio, asset, tx)
        result = replace_portfolio(result, reverse_linked_pair(portfolio, pair, sequence))
    elif plan.action == RemovalAction.LEGACY_BUY:
        result = replace_portfolio(result, reverse_legacy_buy(portfolio, asset, tx, sequence))
    elif plan.action == RemovalAction.SELL_WITH_PROCEEDS:
        result = replace_portfolio(result, reverse_sell_with_proceeds(portfolio, asset, tx))
    elif plan.action == RemovalAction.PROCEEDS_ASSET:
        sell_asset, sell = validation.find_matching_sell(asset, tx, portfolio.assets)
        result = replace_portfolio(result, reverse_proceeds_asset(portfolio, asset, sell_asset, sell))
    else:
        result = replace_portfolio(result, reverse_simple(portfolio, asset.id, tx.id))

    logger.info(f"[Reversal] {plan.action.value}: removed {tx.type.value} {tx.id} from {asset.ticker}")
    return MutationResult(portfolios=result, validation=plan.validation, warnings=plan.effects)


# ------------------------------------------------------------------------------
# Asset removal
# ------------------------------------------------------------------------------
def _asset_cascade(portfolio: Portfolio, asset: Asset):
    """SELLs that paid into this asset, and swap BUYs whose paying SELL is gone."""
    sales = [(a, s) for a, s in sells_into(asset.ticker, portfolio.assets) if a.id != asset.id]
    orphaned_buys = [
        tx for tx in asset.transactions
        if tx.linked_buy_sell_transaction_id
        and tx.source_ticker
        and locate(portfolio, tx.linked_buy_sell_transaction_id)[1] is None
    ]
    return sales, orphaned_buys


def plan_asset_removal(portfolios: Sequence[Portfolio], portfolio_id: str, asset_id: str) -> RemovalPlan:
    portfolio = find_portfolio(portfolios, portfolio_id)
    asset = portfolio.find_asset(asset_id) if portfolio else None
    if asset is None:
        return RemovalPlan(action=RemovalAction.NOOP, validation=ValidationResult.fail("Asset not found."))

    check = validation.validate_asset_removal(portfolios, portfolio, asset)
    if not check.valid:
        return RemovalPlan(action=RemovalAction.ASSET, validation=check)

    sales, orphaned_buys = _asset_cascade(portfolio, asset)
    effects = [f"all {asset.quantity} {asset.ticker} and its transaction history are removed"]
    for sell_asset, sell in sales:
        effects.append(
            f"the sale of {sell.quantity} {sell_asset.ticker} on {sell.date.isoformat()} is reversed "
            f"and the sold {sell_asset.ticker} restored"
        )
    for buy in orphaned_buys:
        effects.append(f"{buy.source_quantity} {buy.source_ticker} spent to acquire it is restored")
    if sales or orphaned_buys:
        effects.append("closed positions of those sales are deleted")
        header = f"Warning: \"{asset.ticker}\" is proceeds from earlier sales. Deleting this position will REVERSE them:"
    else:
        header = f"Are you sure you want to delete {asset.ticker}?"
    return _confirm(RemovalAction.ASSET, header, effects)


def remove_asset(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    asset_id: str,
    confirmed: bool = False,
) -> MutationResult:
    """
    Delete a whole position. Refused while the asset heads a swap chain.
    Sales that produced it are reversed (sold assets restored, their closed
    positions deleted) and leftover closed positions on the ticker purged.
    """
    plan = plan_asset_removal(portfolios, portfolio_id, asset_id)
    if not plan.validation.valid or plan.action == RemovalAction.NOOP:
        return MutationResult.declined(list(portfolios), plan.validation)
    if plan.requires_confirmation and not confirmed:
        return MutationResult.declined(list(portfolios), plan.validation)

    portfolio = find_portfolio(portfolios, portfolio_id)
    asset = portfolio.find_asset(asset_id)
    sales, orphaned_buys = _asset_cascade(portfolio, asset)
    sequence = sequence_for(portfolios)

    updated = drop_asset(portfolio, asset.id)
    for sell_asset, sell in sales:
        updated = without_transaction(updated, sell_asset.id, sell.id)
        updated = purge_closed_positions(updated, sell.id)
    for offset, buy in enumerate(orphaned_buys):
        sell_id = buy.linked_buy_sell_transaction_id
        updated = restore_spent_source(
            updated, buy, positions_for_sale(portfolio, sell_id), sequence + offset,
            f"Restored from deleted {asset.ticker} position",
        )
        updated = purge_closed_positions(updated, sell_id)
    updated = purge_orphaned_positions(updated, asset.ticker)

    logger.info(
        f"[Reversal] Removed asset {asset.ticker} from '{portfolio.name}' "
        f"({len(sales)} sale(s) reversed, {len(orphaned_buys)} source(s) restored)"
    )
    return MutationResult(
        portfolios=replace_portfolio(portfolios, updated),
        validation=plan.validation,
        warnings=plan.effects,
    )

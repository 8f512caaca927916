"""
foliotx/services/transaction.py

The transaction application engine. Each public function is a state
transition over the ledger: it takes the current list of portfolios and
returns a MutationResult with the new list. Inputs are never modified, so a
declined call hands back exactly what it was given.

Transitions:
  - record_deposit / record_income / record_buy: one asset gains a lot
  - record_withdrawal: one asset loses quantity, FIFO cost basis removed
  - record_swap: linked SELL on the source + BUY on the destination
  - record_transfer: FIFO lot slices copied into another portfolio
  - edit_transaction: quantity/price/date/tag edit with totalCost re-derived

Every touched asset goes through lots.with_transactions so its aggregates
are recomputed from the full transaction list, never patched.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from foliotx.constants import (
    DEFAULT_ASSET_TYPE,
    DEFAULT_INCOME_TAG,
    DEFAULT_TAG,
    DEFAULT_TRANSFER_TAG,
    DEFAULT_WITHDRAWAL_TAG,
    FALLBACK_RATES,
    WORKING_CURRENCY,
)
from foliotx.schemas.ledger import (
    Asset,
    ClosedPosition,
    MutationResult,
    Portfolio,
    Transaction,
    TxType,
    ValidationResult,
    new_id,
    utcnow,
)
from foliotx.services import validation
from foliotx.services.currency import (
    RateMap,
    convert,
    detect_native_currency,
    is_cash_asset,
)
from foliotx.services.fifo import resolve_fifo
from foliotx.services.lots import is_drained, next_sequence, reprice_disposals, with_transactions

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ------------------------------------------------------------------------------
# Ledger state helpers (shared with services/reversal.py)
# ------------------------------------------------------------------------------
def find_portfolio(portfolios: Sequence[Portfolio], portfolio_id: Optional[str]) -> Optional[Portfolio]:
    return next((p for p in portfolios if p.id == portfolio_id), None)


def replace_portfolio(portfolios: Sequence[Portfolio], updated: Portfolio) -> List[Portfolio]:
    return [updated if p.id == updated.id else p for p in portfolios]


def put_asset(portfolio: Portfolio, asset: Asset) -> Portfolio:
    """
    Store 'asset' in the portfolio (replacing by id, or appending). A drained
    asset is removed instead of being kept as a zero row.
    """
    if is_drained(asset):
        logger.info(f"[Ledger] {asset.ticker} drained to zero; removed from '{portfolio.name}'")
        return drop_asset(portfolio, asset.id)
    if portfolio.find_asset(asset.id) is None:
        assets = portfolio.assets + [asset]
    else:
        assets = [asset if a.id == asset.id else a for a in portfolio.assets]
    return portfolio.model_copy(update={"assets": assets})


def drop_asset(portfolio: Portfolio, asset_id: str) -> Portfolio:
    return portfolio.model_copy(update={"assets": [a for a in portfolio.assets if a.id != asset_id]})


def add_closed_positions(portfolio: Portfolio, positions: List[ClosedPosition]) -> Portfolio:
    if not positions:
        return portfolio
    return portfolio.model_copy(update={"closed_positions": portfolio.closed_positions + positions})


def sequence_for(portfolios: Sequence[Portfolio]) -> int:
    return next_sequence(asset.transactions for p in portfolios for asset in p.assets)


def new_asset(ticker: str, name: Optional[str] = None, currency: Optional[str] = None,
              current_price: Decimal = ZERO) -> Asset:
    return Asset(
        ticker=ticker,
        name=name or ticker,
        currency=(currency or detect_native_currency(ticker)).upper(),
        asset_type="CASH" if is_cash_asset(ticker) else DEFAULT_ASSET_TYPE,
        current_price=current_price,
    )


def rate_snapshot(rates: Optional[RateMap]) -> dict:
    return {code: Decimal(str(value)) for code, value in (rates or FALLBACK_RATES).items()}


def unit_price(total: Decimal, quantity: Decimal) -> Decimal:
    return total / quantity if quantity else ZERO


def declined(portfolios: Sequence[Portfolio], error: str) -> MutationResult:
    return MutationResult.declined(list(portfolios), ValidationResult.fail(error))


# ------------------------------------------------------------------------------
# Acquisitions
# ------------------------------------------------------------------------------
def _acquire(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    tx_type: TxType,
    ticker: str,
    quantity: Decimal,
    price_per_coin: Decimal,
    day: date,
    tag: str,
    name: Optional[str],
    currency: Optional[str],
    rates: Optional[RateMap],
    **provenance,
) -> MutationResult:
    portfolio = find_portfolio(portfolios, portfolio_id)
    if portfolio is None:
        return declined(portfolios, "Portfolio not found.")

    ticker = ticker.strip().upper()
    asset = portfolio.find_asset_by_ticker(ticker) or new_asset(ticker, name, currency, price_per_coin)
    tx = Transaction(
        type=tx_type,
        quantity=quantity,
        price_per_coin=price_per_coin,
        date=day,
        total_cost=quantity * price_per_coin,
        tag=tag,
        sequence=sequence_for(portfolios),
        purchase_currency=(currency or asset.currency).upper(),
        exchange_rate_at_purchase=rate_snapshot(rates),
        **provenance,
    )
    updated = put_asset(portfolio, with_transactions(asset, asset.transactions + [tx]))
    logger.info(f"[Ledger] {tx_type.value} {quantity} {ticker} @ {price_per_coin} into '{portfolio.name}'")
    return MutationResult(portfolios=replace_portfolio(portfolios, updated), created_ids=[tx.id])


def record_deposit(portfolios, portfolio_id, ticker, quantity, date, price_per_coin=ZERO,
                   tag=None, name=None, currency=None, deposit_source=None, rates=None) -> MutationResult:
    """External funds entering the portfolio at 100% of their stated cost."""
    return _acquire(
        portfolios, portfolio_id, TxType.DEPOSIT, ticker, quantity, price_per_coin, date,
        tag or DEFAULT_TAG, name, currency, rates, deposit_source=deposit_source,
    )


def record_income(portfolios, portfolio_id, ticker, quantity, date, price_per_coin=ZERO,
                  tag=None, name=None, currency=None, income_type=None, income_source=None,
                  rates=None) -> MutationResult:
    """Income is not a purchase: cost basis is zero unless supplied."""
    return _acquire(
        portfolios, portfolio_id, TxType.INCOME, ticker, quantity, price_per_coin, date,
        tag or DEFAULT_INCOME_TAG, name, currency, rates,
        income_type=income_type, income_source=income_source,
    )


def record_buy(portfolios, portfolio_id, ticker, quantity, price_per_coin, date,
               tag=None, name=None, currency=None, rates=None) -> MutationResult:
    return _acquire(
        portfolios, portfolio_id, TxType.BUY, ticker, quantity, price_per_coin, date,
        tag or DEFAULT_TAG, name, currency, rates,
    )


# ------------------------------------------------------------------------------
# Disposals
# ------------------------------------------------------------------------------
def record_withdrawal(portfolios, portfolio_id, asset_id, quantity, date, tag=None,
                      withdrawal_destination=None, rates=None) -> MutationResult:
    """
    Take 'quantity' out of the asset. The cost basis removed comes from the
    asset's own FIFO lots; no closed positions are produced (a withdrawal is
    not a swap).
    """
    portfolio = find_portfolio(portfolios, portfolio_id)
    asset = portfolio.find_asset(asset_id) if portfolio else None
    if asset is None:
        return declined(portfolios, "Asset not found.")

    check = validation.validate_disposal(asset, quantity, date)
    if not check.valid:
        return MutationResult.declined(list(portfolios), check)

    fifo = resolve_fifo(asset, quantity, date, rates=rates)
    tx = Transaction(
        type=TxType.WITHDRAWAL,
        quantity=quantity,
        price_per_coin=unit_price(fifo.cost_basis, quantity),
        date=date,
        total_cost=fifo.cost_basis,
        tag=tag or DEFAULT_WITHDRAWAL_TAG,
        sequence=sequence_for(portfolios),
        purchase_currency=asset.currency,
        exchange_rate_at_purchase=rate_snapshot(rates),
        withdrawal_destination=withdrawal_destination,
    )
    updated = put_asset(portfolio, with_transactions(asset, asset.transactions + [tx]))
    logger.info(f"[Ledger] WITHDRAWAL {quantity} {asset.ticker} (cost basis {fifo.cost_basis}) from '{portfolio.name}'")
    return MutationResult(portfolios=replace_portfolio(portfolios, updated), created_ids=[tx.id])


def record_swap(
    portfolios: Sequence[Portfolio],
    portfolio_id: str,
    source_ticker: str,
    source_quantity: Decimal,
    destination_ticker: str,
    destination_quantity: Decimal,
    date: date,
    tag: Optional[str] = None,
    source_price: Optional[Decimal] = None,
    destination_name: Optional[str] = None,
    rates: Optional[RateMap] = None,
    working_currency: str = WORKING_CURRENCY,
) -> MutationResult:
    """
    Spend one held asset to acquire another, as one atomic pair:

      1) SELL on the source: FIFO cost basis consumed, proceeds valued at
         'source_price' (1 for cash) and paid into the destination ticker.
      2) BUY on the destination: cost = proceeds converted into the
         destination's currency (cash destinations cost their own quantity).
      3) Both rows share a transaction_pair_id and point at each other.
      4) Closed positions are produced only when the source is not cash.

    Nothing is stored unless both sides are built.
    """
    portfolio = find_portfolio(portfolios, portfolio_id)
    if portfolio is None:
        return declined(portfolios, "Portfolio not found.")

    source_ticker = source_ticker.strip().upper()
    destination_ticker = destination_ticker.strip().upper()
    source = portfolio.find_asset_by_ticker(source_ticker)
    check = validation.validate_swap(source, source_ticker, source_quantity, destination_ticker, date)
    if not check.valid:
        return MutationResult.declined(list(portfolios), check)

    warnings = []
    source_is_cash = is_cash_asset(source.ticker)
    if source_is_cash:
        price = Decimal("1")
    elif source_price is not None:
        price = source_price
    elif source.current_price > 0:
        price = source.current_price
    else:
        price = source.avg_buy_price
        warnings.append(f"No market price for {source.ticker}; valued at average cost {price}.")
        logger.warning(f"[Swap] {warnings[-1]}")

    sequence = sequence_for(portfolios)
    sell_id, buy_id, pair_id = new_id(), new_id(), new_id()
    proceeds = source_quantity * price
    snapshot = rate_snapshot(rates)
    sell = Transaction(
        id=sell_id,
        type=TxType.SELL,
        quantity=source_quantity,
        date=date,
        tag=tag or DEFAULT_TAG,
        sequence=sequence,
        purchase_currency=source.currency,
        exchange_rate_at_purchase=snapshot,
        proceeds=proceeds,
        proceeds_currency=destination_ticker,
        destination_ticker=destination_ticker,
        destination_quantity=destination_quantity,
        linked_buy_sell_transaction_id=buy_id,
        transaction_pair_id=pair_id,
    )
    fifo = resolve_fifo(
        source, source_quantity, date,
        sell_transaction=None if source_is_cash else sell,
        exit_price=price,
        exit_currency=source.currency,
        working_currency=working_currency,
        rates=snapshot,
    )
    sell = sell.model_copy(update={
        "total_cost": fifo.cost_basis,
        "price_per_coin": unit_price(fifo.cost_basis, source_quantity),
    })

    destination = portfolio.find_asset_by_ticker(destination_ticker)
    destination_currency = destination.currency if destination else detect_native_currency(destination_ticker)
    if is_cash_asset(destination_ticker):
        buy_total = destination_quantity
    else:
        buy_total = convert(proceeds, source.currency, destination_currency, snapshot)
    buy_price = unit_price(buy_total, destination_quantity)
    if destination is None:
        destination = new_asset(destination_ticker, destination_name, destination_currency, buy_price)
    buy = Transaction(
        id=buy_id,
        type=TxType.BUY,
        quantity=destination_quantity,
        price_per_coin=buy_price,
        date=date,
        total_cost=buy_total,
        tag=tag or DEFAULT_TAG,
        sequence=sequence + 1,
        purchase_currency=destination_currency,
        exchange_rate_at_purchase=snapshot,
        source_ticker=source.ticker,
        source_quantity=source_quantity,
        linked_buy_sell_transaction_id=sell_id,
        transaction_pair_id=pair_id,
    )

    updated = put_asset(portfolio, with_transactions(source, source.transactions + [sell]))
    updated = put_asset(updated, with_transactions(destination, destination.transactions + [buy]))
    updated = add_closed_positions(updated, fifo.closed_positions)
    logger.info(
        f"[Swap] {source_quantity} {source.ticker} -> {destination_quantity} {destination_ticker} "
        f"(pair {pair_id}, {len(fifo.closed_positions)} closed position(s))"
    )
    return MutationResult(
        portfolios=replace_portfolio(portfolios, updated),
        created_ids=[sell_id, buy_id],
        warnings=warnings,
    )


def record_transfer(portfolios, portfolio_id, asset_id, quantity, destination_portfolio_id, date,
                    tag=None, rates=None) -> MutationResult:
    """
    Move 'quantity' to another portfolio lot by lot. The oldest open lots are
    sliced FIFO; each slice is copied into the destination (same date, price
    and tag, marked transferred_from and transfer_id) and the source records
    one TRANSFER for the total. Cost basis is conserved across the two
    portfolios. Transferring everything drains the source asset, which is
    removed along with its TRANSFER; the copies can still send it back.
    """
    source = find_portfolio(portfolios, portfolio_id)
    asset = source.find_asset(asset_id) if source else None
    if asset is None:
        return declined(portfolios, "Asset not found.")
    check = validation.validate_transfer(portfolios, source, asset, quantity, date, destination_portfolio_id)
    if not check.valid:
        return MutationResult.declined(list(portfolios), check)
    destination = find_portfolio(portfolios, destination_portfolio_id)

    fifo = resolve_fifo(asset, quantity, date, rates=rates)
    sequence = sequence_for(portfolios)
    transfer = Transaction(
        type=TxType.TRANSFER,
        quantity=quantity,
        price_per_coin=unit_price(fifo.cost_basis, quantity),
        date=date,
        total_cost=fifo.cost_basis,
        tag=tag or DEFAULT_TRANSFER_TAG,
        sequence=sequence,
        purchase_currency=asset.currency,
        exchange_rate_at_purchase=rate_snapshot(rates),
        destination_portfolio_id=destination.id,
    )
    copies = [
        piece.transaction.model_copy(update={
            "id": new_id(),
            "quantity": piece.quantity,
            "total_cost": piece.cost,
            "price_per_coin": unit_price(piece.cost, piece.quantity),
            "sequence": sequence + offset,
            "created_at": utcnow(),
            "last_edited": None,
            "transferred_from": source.id,
            "transfer_id": transfer.id,
            "source_ticker": None,
            "source_quantity": None,
            "linked_buy_sell_transaction_id": None,
            "transaction_pair_id": None,
        })
        for offset, piece in enumerate(fifo.slices, start=1)
    ]

    updated_source = put_asset(source, with_transactions(asset, asset.transactions + [transfer]))
    target = destination.find_asset_by_ticker(asset.ticker)
    if target is None:
        target = asset.model_copy(update={"id": new_id(), "transactions": [], "error": None})
    updated_destination = put_asset(destination, with_transactions(target, target.transactions + copies))

    result = replace_portfolio(portfolios, updated_source)
    result = replace_portfolio(result, updated_destination)
    logger.info(
        f"[Transfer] {quantity} {asset.ticker} ({fifo.cost_basis} cost basis) "
        f"'{source.name}' -> '{destination.name}' as {len(copies)} lot(s)"
    )
    return MutationResult(portfolios=result, created_ids=[transfer.id] + [c.id for c in copies])


# ------------------------------------------------------------------------------
# Edit
# ------------------------------------------------------------------------------
def edit_transaction(portfolios, portfolio_id, asset_id, transaction_id, quantity=None,
                     price_per_coin=None, date=None, tag=None) -> MutationResult:
    """
    Edit quantity, price, date or tag. totalCost is always re-derived as
    quantity x pricePerCoin. TRANSFERs, swap legs and copies of a TRANSFER
    still on record are not editable. An edit that would leave any day with
    a negative balance, or move the cost of a later SELL or TRANSFER, is
    refused; later WITHDRAWALs are re-priced from the edited lots.
    """
    portfolio = find_portfolio(portfolios, portfolio_id)
    asset = portfolio.find_asset(asset_id) if portfolio else None
    tx = asset.find_transaction(transaction_id) if asset else None
    if tx is None:
        return declined(portfolios, "Transaction not found.")

    check = validation.validate_edit(portfolios, portfolio.id, asset, tx)
    if not check.valid:
        return MutationResult.declined(list(portfolios), check)

    new_quantity = quantity if quantity is not None else tx.quantity
    new_price = price_per_coin if price_per_coin is not None else tx.price_per_coin
    edited = tx.model_copy(update={
        "quantity": new_quantity,
        "price_per_coin": new_price,
        "total_cost": new_quantity * new_price,
        "date": date or tx.date,
        "tag": tag or tx.tag,
        "last_edited": utcnow(),
    })
    transactions = [edited if t.id == tx.id else t for t in asset.transactions]
    check = validation.validate_balance_after(asset, transactions, "apply this edit")
    if not check.valid:
        return MutationResult.declined(list(portfolios), check)
    check = validation.validate_cost_basis_after(asset, asset.transactions, transactions, "apply this edit")
    if not check.valid:
        return MutationResult.declined(list(portfolios), check)
    transactions, _ = reprice_disposals(asset.transactions, transactions)

    updated = put_asset(portfolio, with_transactions(asset, transactions))
    logger.info(f"[Ledger] Edited {tx.type.value} {tx.id} on {asset.ticker}")
    return MutationResult(portfolios=replace_portfolio(portfolios, updated), created_ids=[])

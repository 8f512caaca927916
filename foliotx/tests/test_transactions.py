"""
Transaction application engine: deposits, income, withdrawals, swaps,
transfers and edits, run directly on Portfolio lists.

Also aggregate consistency over a long seeded run of random operations:
after every step each asset's stored quantity / cost basis / average price
must equal recompute() over its own transactions.
"""

import random
from datetime import date, timedelta
from decimal import Decimal

from foliotx.constants import DEFAULT_INCOME_TAG, DEFAULT_TAG, DEFAULT_TRANSFER_TAG
from foliotx.schemas.ledger import TxType
from foliotx.services import reversal
from foliotx.services import transaction as engine
from foliotx.services.lots import recompute

D = Decimal


def asset_of(portfolios, portfolio_id, ticker):
    portfolio = next(p for p in portfolios if p.id == portfolio_id)
    return portfolio.find_asset_by_ticker(ticker)


def holding(ledger, ticker="BTC", quantity="1", price="30000", day=date(2024, 1, 1), index=0):
    result = engine.record_deposit(ledger, ledger[index].id, ticker, D(quantity), day, price_per_coin=D(price))
    assert result.applied
    return result.portfolios


# ------------------------------------------------------------------------------
# Acquisitions
# ------------------------------------------------------------------------------
def test_deposit_creates_asset_with_aggregates(ledger):
    result = engine.record_deposit(ledger, ledger[0].id, "btc", D("2"), date(2024, 1, 1), price_per_coin=D("30000"))

    asset = asset_of(result.portfolios, ledger[0].id, "BTC")
    assert asset.ticker == "BTC"
    assert asset.quantity == D("2")
    assert asset.total_cost_basis == D("60000")
    assert asset.avg_buy_price == D("30000")
    assert asset.transactions[0].tag == DEFAULT_TAG
    assert asset.transactions[0].sequence == 1
    assert result.created_ids == [asset.transactions[0].id]
    # Input is untouched
    assert ledger[0].assets == []


def test_second_deposit_reuses_the_asset(ledger):
    portfolios = holding(ledger)
    result = engine.record_deposit(portfolios, ledger[0].id, "BTC", D("1"), date(2024, 2, 1), price_per_coin=D("40000"))

    assert len(result.portfolios[0].assets) == 1
    asset = result.portfolios[0].assets[0]
    assert asset.quantity == D("2")
    assert asset.avg_buy_price == D("35000")
    assert asset.transactions[1].sequence == 2


def test_income_defaults_to_zero_cost(ledger):
    result = engine.record_income(ledger, ledger[0].id, "ETH", D("0.5"), date(2024, 1, 1), income_type="staking")

    tx = result.portfolios[0].assets[0].transactions[0]
    assert tx.type == TxType.INCOME
    assert tx.total_cost == 0
    assert tx.tag == DEFAULT_INCOME_TAG
    assert tx.income_type == "staking"


def test_unknown_portfolio_is_declined(ledger):
    result = engine.record_deposit(ledger, "nope", "BTC", D("1"), date(2024, 1, 1))
    assert not result.applied
    assert result.validation.error == "Portfolio not found."
    assert result.portfolios == ledger


# ------------------------------------------------------------------------------
# Withdrawals
# ------------------------------------------------------------------------------
def test_withdrawal_removes_fifo_cost(ledger):
    portfolios = holding(ledger, quantity="10", price="100")
    portfolios = engine.record_deposit(portfolios, ledger[0].id, "BTC", D("10"), date(2024, 1, 5),
                                       price_per_coin=D("200")).portfolios
    asset = portfolios[0].assets[0]

    result = engine.record_withdrawal(portfolios, ledger[0].id, asset.id, D("15"), date(2024, 2, 1))

    withdrawal = result.portfolios[0].assets[0].transactions[-1]
    assert withdrawal.total_cost == D("2000")
    assert result.portfolios[0].assets[0].quantity == D("5")
    assert result.portfolios[0].assets[0].total_cost_basis == D("1000")
    assert result.portfolios[0].closed_positions == []


def test_withdrawing_everything_removes_the_asset(ledger):
    portfolios = holding(ledger, quantity="3")
    asset = portfolios[0].assets[0]

    result = engine.record_withdrawal(portfolios, ledger[0].id, asset.id, D("3"), date(2024, 2, 1))

    assert result.applied
    assert result.portfolios[0].assets == []


def test_withdrawing_more_than_held_is_declined(ledger):
    portfolios = holding(ledger, quantity="3")
    asset = portfolios[0].assets[0]

    result = engine.record_withdrawal(portfolios, ledger[0].id, asset.id, D("4"), date(2024, 2, 1))

    assert not result.applied
    assert result.validation.error.startswith("Insufficient BTC on 2024-02-01")
    assert "Available: 3 BTC" in result.validation.error
    assert result.portfolios == portfolios


def test_withdrawal_before_the_deposit_is_declined(ledger):
    portfolios = holding(ledger, day=date(2024, 3, 1))
    asset = portfolios[0].assets[0]
    result = engine.record_withdrawal(portfolios, ledger[0].id, asset.id, D("1"), date(2024, 2, 1))
    assert not result.applied


# ------------------------------------------------------------------------------
# Swaps
# ------------------------------------------------------------------------------
def test_swap_creates_linked_sell_and_buy(ledger):
    portfolios = holding(ledger)
    result = engine.record_swap(
        portfolios, ledger[0].id, "BTC", D("0.5"), "ETH", D("10"), date(2024, 2, 1),
        source_price=D("40000"),
    )
    assert result.applied
    sell_id, buy_id = result.created_ids

    btc = asset_of(result.portfolios, ledger[0].id, "BTC")
    eth = asset_of(result.portfolios, ledger[0].id, "ETH")
    sell = btc.find_transaction(sell_id)
    buy = eth.find_transaction(buy_id)

    assert sell.type == TxType.SELL and buy.type == TxType.BUY
    assert sell.transaction_pair_id == buy.transaction_pair_id is not None
    assert sell.linked_buy_sell_transaction_id == buy.id
    assert buy.linked_buy_sell_transaction_id == sell.id
    assert sell.total_cost == D("15000")
    assert sell.proceeds == D("20000")
    assert sell.proceeds_currency == "ETH"
    assert buy.total_cost == D("20000")
    assert buy.price_per_coin == D("2000")
    assert buy.source_ticker == "BTC"
    assert buy.source_quantity == D("0.5")
    assert btc.quantity == D("0.5")
    assert btc.total_cost_basis == D("15000")

    closed = result.portfolios[0].closed_positions
    assert len(closed) == 1
    assert closed[0].sell_transaction_id == sell.id
    assert closed[0].realized_pnl == D("5000")


def test_swap_from_cash_has_no_closed_positions(ledger):
    portfolios = holding(ledger, ticker="USD", quantity="1000", price="1")
    result = engine.record_swap(portfolios, ledger[0].id, "USD", D("1000"), "BTC", D("0.02"), date(2024, 2, 1))

    assert result.applied
    assert result.portfolios[0].closed_positions == []
    # Cash fully spent: the USD row is gone, not left at zero
    assert asset_of(result.portfolios, ledger[0].id, "USD") is None
    btc = asset_of(result.portfolios, ledger[0].id, "BTC")
    assert btc.total_cost_basis == D("1000")


def test_swap_into_cash_costs_its_own_quantity(ledger):
    portfolios = holding(ledger)
    result = engine.record_swap(portfolios, ledger[0].id, "BTC", D("1"), "USDC", D("41000"), date(2024, 2, 1),
                                source_price=D("40000"))
    usdc = asset_of(result.portfolios, ledger[0].id, "USDC")
    assert usdc.total_cost_basis == D("41000")
    assert usdc.asset_type == "CASH"


def test_swap_without_market_price_uses_average_cost_and_warns(ledger):
    portfolios = holding(ledger)
    btc = portfolios[0].assets[0].model_copy(update={"current_price": D("0")})
    portfolios = [portfolios[0].model_copy(update={"assets": [btc]}), portfolios[1]]

    result = engine.record_swap(portfolios, ledger[0].id, "BTC", D("1"), "ETH", D("10"), date(2024, 2, 1))

    assert result.applied
    assert result.warnings and "average cost" in result.warnings[0]
    assert result.portfolios[0].closed_positions[0].realized_pnl == 0


def test_swap_into_itself_is_declined(ledger):
    portfolios = holding(ledger)
    result = engine.record_swap(portfolios, ledger[0].id, "BTC", D("1"), "btc", D("1"), date(2024, 2, 1))
    assert not result.applied
    assert result.validation.error == "Cannot swap an asset into itself."


def test_swap_of_unheld_asset_is_declined(ledger):
    result = engine.record_swap(ledger, ledger[0].id, "ETH", D("1"), "BTC", D("1"), date(2024, 2, 1))
    assert not result.applied
    assert result.validation.error == "You do not hold any ETH in this portfolio."


# ------------------------------------------------------------------------------
# Transfers
# ------------------------------------------------------------------------------
def test_transfer_conserves_cost_basis(ledger):
    portfolios = holding(ledger, quantity="10", price="50")
    source_asset = portfolios[0].assets[0]

    result = engine.record_transfer(portfolios, ledger[0].id, source_asset.id, D("5"), ledger[1].id, date(2024, 2, 1))

    source = asset_of(result.portfolios, ledger[0].id, "BTC")
    destination = asset_of(result.portfolios, ledger[1].id, "BTC")
    assert source.quantity == D("5")
    assert source.total_cost_basis == D("250")
    assert destination.quantity == D("5")
    assert destination.total_cost_basis == D("250")
    assert source.total_cost_basis + destination.total_cost_basis == D("500")

    transfer = source.transactions[-1]
    assert transfer.type == TxType.TRANSFER
    assert transfer.tag == DEFAULT_TRANSFER_TAG
    assert transfer.destination_portfolio_id == ledger[1].id
    copy = destination.transactions[0]
    assert copy.transferred_from == ledger[0].id
    assert copy.date == date(2024, 1, 1)
    assert destination.id != source.id


def test_transfer_into_existing_asset_appends_lots(ledger):
    portfolios = holding(ledger, quantity="10", price="50")
    portfolios = holding(portfolios, quantity="2", price="70", index=1)
    source_asset = portfolios[0].assets[0]

    result = engine.record_transfer(portfolios, ledger[0].id, source_asset.id, D("5"), ledger[1].id, date(2024, 2, 1))

    destination = asset_of(result.portfolios, ledger[1].id, "BTC")
    assert len(result.portfolios[1].assets) == 1
    assert destination.quantity == D("7")
    assert destination.total_cost_basis == D("390")


def test_transfer_splits_copies_per_lot(ledger):
    portfolios = holding(ledger, quantity="10", price="100")
    portfolios = holding(portfolios, quantity="10", price="200", day=date(2024, 1, 5))
    source_asset = portfolios[0].assets[0]

    result = engine.record_transfer(portfolios, ledger[0].id, source_asset.id, D("15"), ledger[1].id, date(2024, 2, 1))

    copies = asset_of(result.portfolios, ledger[1].id, "BTC").transactions
    assert [(c.quantity, c.total_cost) for c in copies] == [(D("10"), D("1000")), (D("5"), D("1000"))]


def test_transfer_to_same_or_missing_portfolio_is_declined(ledger):
    portfolios = holding(ledger)
    asset = portfolios[0].assets[0]

    same = engine.record_transfer(portfolios, ledger[0].id, asset.id, D("1"), ledger[0].id, date(2024, 2, 1))
    missing = engine.record_transfer(portfolios, ledger[0].id, asset.id, D("1"), "gone", date(2024, 2, 1))

    assert same.validation.error == "Source and destination portfolio must be different."
    assert missing.validation.error == "The destination portfolio does not exist."


# ------------------------------------------------------------------------------
# Edits
# ------------------------------------------------------------------------------
def test_edit_rederives_total_cost(ledger):
    portfolios = holding(ledger, quantity="2", price="100")
    asset = portfolios[0].assets[0]
    tx = asset.transactions[0]

    result = engine.edit_transaction(portfolios, ledger[0].id, asset.id, tx.id, quantity=D("3"), tag="Long-Term")

    edited = result.portfolios[0].assets[0].transactions[0]
    assert edited.total_cost == D("300")
    assert edited.tag == "Long-Term"
    assert edited.last_edited is not None
    assert result.portfolios[0].assets[0].quantity == D("3")


def test_edit_that_would_go_negative_is_declined(ledger):
    portfolios = holding(ledger, quantity="5")
    asset = portfolios[0].assets[0]
    portfolios = engine.record_withdrawal(portfolios, ledger[0].id, asset.id, D("4"), date(2024, 2, 1)).portfolios
    deposit = portfolios[0].assets[0].transactions[0]

    result = engine.edit_transaction(portfolios, ledger[0].id, asset.id, deposit.id, quantity=D("1"))

    assert not result.applied
    assert "would go negative" in result.validation.error


def test_edit_of_a_consumed_lot_reprices_later_withdrawals(ledger):
    portfolios = holding(ledger, quantity="10", price="100")
    portfolios = holding(portfolios, quantity="20", price="200", day=date(2024, 1, 2))
    asset = portfolios[0].assets[0]
    first = asset.transactions[0]
    portfolios = engine.record_withdrawal(portfolios, ledger[0].id, asset.id, D("10"), date(2024, 1, 3)).portfolios

    result = engine.edit_transaction(portfolios, ledger[0].id, asset.id, first.id, price_per_coin=D("150"))

    assert result.applied
    btc = result.portfolios[0].assets[0]
    assert btc.transactions[-1].type == TxType.WITHDRAWAL
    assert btc.transactions[-1].total_cost == D("1500")
    assert (btc.quantity, btc.total_cost_basis, btc.avg_buy_price) == (D("20"), D("4000"), D("200"))


def test_edit_that_would_move_a_sale_cost_is_declined(ledger):
    portfolios = holding(ledger, quantity="1", price="30000")
    asset = portfolios[0].assets[0]
    lot = asset.transactions[0]
    swap = engine.record_swap(portfolios, ledger[0].id, "BTC", D("0.5"), "ETH", D("10"), date(2024, 2, 1))

    result = engine.edit_transaction(swap.portfolios, ledger[0].id, asset.id, lot.id, price_per_coin=D("35000"))

    assert not result.applied
    assert result.validation.error.startswith("Cannot apply this edit: the cost basis of the SELL of 0.5 BTC")


def test_swap_legs_are_not_editable(ledger):
    portfolios = holding(ledger)
    swap = engine.record_swap(portfolios, ledger[0].id, "BTC", D("0.5"), "ETH", D("10"), date(2024, 2, 1))
    eth = asset_of(swap.portfolios, ledger[0].id, "ETH")

    result = engine.edit_transaction(swap.portfolios, ledger[0].id, eth.id, swap.created_ids[1], quantity=D("11"))

    assert not result.applied
    assert "one side of a swap" in result.validation.error


# ------------------------------------------------------------------------------
# Aggregates stay consistent under random operations
# ------------------------------------------------------------------------------
TICKERS = ["BTC", "ETH", "SOL", "USD"]


def _assert_consistent(portfolios):
    for portfolio in portfolios:
        for asset in portfolio.assets:
            position = recompute(asset.transactions)
            assert asset.quantity == position.quantity
            assert asset.total_cost_basis == position.total_cost_basis
            assert asset.avg_buy_price == position.avg_buy_price
            assert asset.quantity > 0, f"{asset.ticker} left as a zero/negative row"


def _random_step(rng, portfolios, day):
    portfolio = rng.choice(portfolios)
    op = rng.choice(["deposit", "deposit", "withdraw", "swap", "transfer", "remove"])
    if op == "deposit" or not portfolio.assets:
        return engine.record_deposit(
            portfolios, portfolio.id, rng.choice(TICKERS), D(rng.randint(1, 20)), day,
            price_per_coin=D(rng.randint(1, 500)),
        )
    asset = rng.choice(portfolio.assets)
    quantity = D(rng.randint(1, 12))
    if op == "withdraw":
        return engine.record_withdrawal(portfolios, portfolio.id, asset.id, quantity, day)
    if op == "swap":
        destination = rng.choice([t for t in TICKERS if t != asset.ticker])
        return engine.record_swap(
            portfolios, portfolio.id, asset.ticker, quantity, destination, D(rng.randint(1, 30)), day,
            source_price=D(rng.randint(1, 500)),
        )
    if op == "transfer":
        other = next(p for p in portfolios if p.id != portfolio.id)
        return engine.record_transfer(portfolios, portfolio.id, asset.id, quantity, other.id, day)
    tx = rng.choice(asset.transactions)
    return reversal.remove_transaction(portfolios, portfolio.id, asset.id, tx.id, confirmed=True)


def test_aggregates_never_drift_under_random_operations(ledger):
    rng = random.Random(20240105)
    portfolios = ledger
    applied = 0
    for step in range(300):
        result = _random_step(rng, portfolios, date(2024, 1, 1) + timedelta(days=step))
        if result.applied:
            applied += 1
        else:
            assert result.portfolios == portfolios
        portfolios = result.portfolios
        _assert_consistent(portfolios)
    assert applied > 100

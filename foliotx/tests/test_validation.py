"""
Pre-flight validation and the currency helpers it leans on.
None of these checks may raise; they return {valid, error}.
"""

from datetime import date
from decimal import Decimal

import pytest

from foliotx.constants import FALLBACK_RATES
from foliotx.schemas.ledger import Asset, Portfolio, Transaction, TxType, ValidationResult
from foliotx.services import validation
from foliotx.services.currency import (
    FallbackRatesProvider,
    base_symbol,
    convert,
    detect_native_currency,
    is_cash_asset,
    resolve_rates,
)
from foliotx.services.lots import with_transactions

D = Decimal


def btc_with(*rows):
    transactions = [
        Transaction(type=tx_type, quantity=D(quantity), total_cost=D(quantity), date=day, sequence=i)
        for i, (tx_type, quantity, day) in enumerate(rows, start=1)
    ]
    return with_transactions(Asset(ticker="BTC"), transactions)


# ------------------------------------------------------------------------------
# ValidationResult
# ------------------------------------------------------------------------------
def test_validation_result_constructors():
    assert ValidationResult.ok().valid
    failed = ValidationResult.fail("nope")
    assert not failed.valid and failed.error == "nope"
    confirm = ValidationResult.confirm("sure?")
    assert confirm.valid and confirm.requires_confirmation
    assert confirm.model_dump(by_alias=True)["confirmationMessage"] == "sure?"


# ------------------------------------------------------------------------------
# Disposals
# ------------------------------------------------------------------------------
def test_disposal_within_balance_is_valid():
    asset = btc_with((TxType.DEPOSIT, "10", date(2024, 1, 1)))
    assert validation.validate_disposal(asset, D("10"), date(2024, 2, 1)).valid


def test_backdated_disposal_respects_later_sales():
    asset = btc_with(
        (TxType.DEPOSIT, "10", date(2024, 1, 1)),
        (TxType.WITHDRAWAL, "8", date(2024, 1, 10)),
    )
    result = validation.validate_disposal(asset, D("5"), date(2024, 1, 5))
    assert not result.valid
    assert "Required: 5 BTC" in result.error
    assert "Available: 2 BTC" in result.error


def test_disposal_of_unheld_asset():
    result = validation.validate_disposal(None, D("1"), date(2024, 1, 1), ticker="DOGE")
    assert result.error == "You do not hold any DOGE in this portfolio."


def test_swap_into_same_base_symbol():
    asset = btc_with((TxType.DEPOSIT, "1", date(2024, 1, 1)))
    result = validation.validate_swap(asset, "BTC", D("1"), "btc (cold)", date(2024, 2, 1))
    assert not result.valid


def test_balance_after_reports_first_negative_day():
    asset = btc_with(
        (TxType.DEPOSIT, "1", date(2024, 1, 1)),
        (TxType.WITHDRAWAL, "2", date(2024, 1, 3)),
    )
    result = validation.validate_balance_after(asset, asset.transactions, "delete this transaction")
    assert result.error.startswith("Cannot delete this transaction: BTC would go negative (-1) on 2024-01-03.")


# ------------------------------------------------------------------------------
# Removals
# ------------------------------------------------------------------------------
def _transferred_eth(legacy=False):
    """'src' sent 1 ETH to 'dst'; returns (source, destination asset, copy)."""
    transfer = Transaction(type=TxType.TRANSFER, quantity=D("1"), date=date(2024, 2, 1), sequence=2,
                           destination_portfolio_id="dst")
    deposit = Transaction(type=TxType.DEPOSIT, quantity=D("1"), date=date(2024, 1, 1), sequence=1)
    source = Portfolio(id="src", name="Trading", assets=[with_transactions(Asset(ticker="ETH"), [deposit, transfer])])
    copy = Transaction(type=TxType.DEPOSIT, quantity=D("1"), date=date(2024, 1, 1), sequence=3,
                       transferred_from="src", transfer_id=None if legacy else transfer.id)
    return source, with_transactions(Asset(ticker="ETH"), [copy]), copy


def test_transfer_copy_redirects_to_source():
    source, asset, copy = _transferred_eth()

    result = validation.validate_transaction_removal([source], "dst", asset, copy.id)
    assert not result.valid
    assert 'copied here by a transfer from "Trading"' in result.error

    edit = validation.validate_edit([source], "dst", asset, copy)
    assert "cannot be edited on its own" in edit.error

    removal = validation.validate_asset_removal([source], Portfolio(id="dst", name="Cold", assets=[asset]), asset)
    assert "copied here by a transfer" in removal.error


def test_copies_without_transfer_id_match_by_ticker():
    source, asset, copy = _transferred_eth(legacy=True)
    origin = validation.backing_transfer([source], "dst", asset, copy)
    assert origin is not None
    assert origin[2].type == TxType.TRANSFER
    assert validation.backing_transfer([source], "elsewhere", asset, copy) is None


def test_copy_is_a_plain_lot_once_its_source_portfolio_is_gone():
    _, asset, copy = _transferred_eth()
    destination = Portfolio(id="dst", name="Cold", assets=[asset])

    assert validation.backing_transfer([destination], "dst", asset, copy) is None
    assert validation.validate_transaction_removal([destination], "dst", asset, copy.id).valid
    assert validation.validate_edit([destination], "dst", asset, copy).valid
    assert validation.validate_asset_removal([destination], destination, asset).valid


def test_copy_is_not_redirected_once_its_transfer_is_gone():
    source, asset, copy = _transferred_eth()
    emptied = source.model_copy(update={"assets": []})

    assert validation.backing_transfer([emptied], "dst", asset, copy) is None
    assert validation.validate_transaction_removal([emptied], "dst", asset, copy.id).valid


def test_transfer_rows_are_not_editable():
    transfer = Transaction(type=TxType.TRANSFER, quantity=D("1"), date=date(2024, 1, 1), sequence=1)
    asset = Asset(ticker="BTC")
    assert not validation.validate_edit([], "p", asset, transfer).valid


def test_removing_a_lot_a_later_sell_was_costed_from_is_refused():
    first = Transaction(type=TxType.DEPOSIT, quantity=D("10"), total_cost=D("1000"), date=date(2024, 1, 1), sequence=1)
    second = Transaction(type=TxType.DEPOSIT, quantity=D("10"), total_cost=D("3000"), date=date(2024, 1, 2), sequence=2)
    sell = Transaction(type=TxType.SELL, quantity=D("5"), total_cost=D("500"), date=date(2024, 1, 3), sequence=3)
    asset = with_transactions(Asset(ticker="BTC"), [first, second, sell])

    result = validation.validate_transaction_removal([], "p", asset, first.id)

    assert not result.valid
    assert result.error.startswith(
        "Cannot delete this transaction: the cost basis of the SELL of 5 BTC on 2024-01-03 would change."
    )
    assert validation.validate_transaction_removal([], "p", asset, second.id).valid


def test_find_matching_sell_pairs_proceeds_with_their_sale():
    sell = Transaction(type=TxType.SELL, quantity=D("0.5"), total_cost=D("15000"), date=date(2024, 2, 1),
                       sequence=2, proceeds_currency="ETH")
    deposit = Transaction(type=TxType.DEPOSIT, quantity=D("1"), total_cost=D("30000"), date=date(2024, 1, 1), sequence=1)
    buy = Transaction(type=TxType.BUY, quantity=D("8"), total_cost=D("20000"), date=date(2024, 2, 1), sequence=3)
    late = Transaction(type=TxType.BUY, quantity=D("1"), total_cost=D("2500"), date=date(2024, 3, 1), sequence=4)
    btc = with_transactions(Asset(ticker="BTC"), [deposit, sell])
    eth = with_transactions(Asset(ticker="ETH"), [buy, late])

    assert validation.find_matching_sell(eth, buy, [btc, eth]) == (btc, sell)
    assert validation.find_matching_sell(eth, late, [btc, eth]) is None


def test_transfer_deletion_without_destination_info():
    transfer = Transaction(type=TxType.TRANSFER, quantity=D("1"), date=date(2024, 1, 1), sequence=1)
    result = validation.validate_transfer_deletion(Asset(ticker="BTC"), transfer, [])
    assert "Missing destination portfolio information" in result.error


def test_transfer_deletion_when_destination_asset_is_gone():
    destination = Portfolio(id="dst", name="Cold Storage")
    transfer = Transaction(type=TxType.TRANSFER, quantity=D("1"), date=date(2024, 1, 1), sequence=1,
                           destination_portfolio_id="dst")
    result = validation.validate_transfer_deletion(Asset(ticker="BTC"), transfer, [destination])
    assert result.error.startswith('BTC no longer exists in "Cold Storage"')


def test_sell_whose_proceeds_are_gone_needs_confirmation():
    sell = Transaction(type=TxType.SELL, quantity=D("1"), date=date(2024, 1, 2), sequence=2,
                       proceeds_currency="ETH")
    asset = with_transactions(Asset(ticker="BTC"), [sell])
    result = validation.validate_sell_with_proceeds_deletion(asset, sell, [asset])
    assert result.valid and result.requires_confirmation
    assert "no longer exist" in result.confirmation_message


# ------------------------------------------------------------------------------
# Currency
# ------------------------------------------------------------------------------
@pytest.mark.parametrize("ticker,expected", [
    ("USD", True), ("chf", True), ("USDT", True), ("DAI", True),
    ("BTC", False), ("AAPL", False), ("USDX", False),
])
def test_is_cash_asset(ticker, expected):
    assert is_cash_asset(ticker) is expected


@pytest.mark.parametrize("ticker,expected", [
    ("NESN.SW", "CHF"), ("SAP.DE", "EUR"), ("VOD.L", "GBP"), ("7203.T", "JPY"),
    ("EUR", "EUR"), ("USDC", "USD"), ("BTC", "USD"),
])
def test_detect_native_currency(ticker, expected):
    assert detect_native_currency(ticker) == expected


def test_base_symbol():
    assert base_symbol(" btc (cold) ") == "BTC"


def test_convert_uses_rates_then_fallback():
    assert convert(D("100"), "USD", "USD") == D("100")
    assert convert(D("92"), "CHF", "USD") == D("100")
    assert convert(D("10"), "USD", "EUR", {"EUR": D("0.5")}) == D("5")
    # Unknown currencies are treated as 1:1 with USD
    assert convert(D("10"), "XYZ", "USD") == D("10")


def test_resolve_rates_survives_a_failing_provider():
    class Broken:
        def rates_for_date(self, day):
            raise ConnectionError("offline")

    class Partial:
        def rates_for_date(self, day):
            return {"eur": 0.9}

    assert resolve_rates(Broken(), date(2024, 1, 1)) == FALLBACK_RATES
    assert resolve_rates(None, date(2024, 1, 1)) == FALLBACK_RATES
    assert resolve_rates(FallbackRatesProvider(), date(2024, 1, 1)) == FALLBACK_RATES
    merged = resolve_rates(Partial(), date(2024, 1, 1))
    assert merged["EUR"] == D("0.9")
    assert merged["CHF"] == FALLBACK_RATES["CHF"]

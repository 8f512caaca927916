"""
Swap chain detection: BTC sold for ETH, ETH later sold for SOL.
"""

from datetime import date
from decimal import Decimal

from foliotx.schemas.ledger import Asset, Transaction, TxType
from foliotx.services.chain import describe_chain, find_chain, reversal_steps, sells_into
from foliotx.services.lots import with_transactions

D = Decimal


def held(ticker, *sales):
    """Asset holding 100 units plus one SELL per (proceeds_ticker, day)."""
    transactions = [Transaction(
        type=TxType.DEPOSIT, quantity=D("100"), total_cost=D("100"),
        date=date(2024, 1, 1), sequence=1,
    )]
    for sequence, (proceeds, day) in enumerate(sales, start=2):
        transactions.append(Transaction(
            type=TxType.SELL, quantity=D("1"), date=day, sequence=sequence,
            proceeds=D("1"), proceeds_currency=proceeds,
        ))
    return with_transactions(Asset(ticker=ticker), transactions)


def test_chain_is_returned_in_discovery_order():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1))),
        held("ETH", ("SOL", date(2024, 3, 1))),
        held("SOL"),
    ]
    chain = find_chain("BTC", assets)

    assert [(link.ticker, link.sold_for) for link in chain] == [("BTC", "ETH"), ("ETH", "SOL")]
    assert chain[0].asset_id == assets[0].id
    assert describe_chain(chain) == "BTC → ETH → SOL"


def test_chain_from_the_middle_and_the_end():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1))),
        held("ETH", ("SOL", date(2024, 3, 1))),
        held("SOL"),
    ]
    assert [(l.ticker, l.sold_for) for l in find_chain("ETH", assets)] == [("ETH", "SOL")]
    assert find_chain("SOL", assets) == []
    assert find_chain("DOGE", assets) == []


def test_cycle_terminates():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1))),
        held("ETH", ("BTC", date(2024, 3, 1))),
    ]
    chain = find_chain("BTC", assets)
    assert [(l.ticker, l.sold_for) for l in chain] == [("BTC", "ETH"), ("ETH", "BTC")]


def test_visited_tickers_are_skipped_and_not_mutated():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1))),
        held("ETH", ("SOL", date(2024, 3, 1))),
    ]
    visited = frozenset({"ETH"})
    chain = find_chain("BTC", assets, visited=visited)

    assert [(l.ticker, l.sold_for) for l in chain] == [("BTC", "ETH")]
    assert visited == frozenset({"ETH"})


def test_branching_chain_lists_every_sale():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1)), ("SOL", date(2024, 2, 2))),
        held("ETH"),
        held("SOL", ("ADA", date(2024, 3, 1))),
    ]
    chain = find_chain("BTC", assets)
    assert [(l.ticker, l.sold_for) for l in chain] == [("BTC", "ETH"), ("BTC", "SOL"), ("SOL", "ADA")]


def test_reversal_steps_start_with_the_most_recent_hop():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1))),
        held("ETH", ("SOL", date(2024, 3, 1))),
    ]
    steps = reversal_steps(find_chain("BTC", assets))
    assert steps[0].startswith("1. Delete or reverse the ETH→SOL sale")
    assert steps[1].startswith("2. Delete or reverse the BTC→ETH sale")


def test_sells_into():
    assets = [
        held("BTC", ("ETH", date(2024, 2, 1))),
        held("SOL", ("eth", date(2024, 3, 1))),
        held("ETH"),
    ]
    sources = [asset.ticker for asset, _ in sells_into("ETH", assets)]
    assert sources == ["BTC", "SOL"]

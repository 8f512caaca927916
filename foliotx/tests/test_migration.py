"""
Backup import: every supported document shape is brought up to date and
the asset aggregates are rebuilt from the transactions.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from foliotx.constants import DEFAULT_PORTFOLIO_NAME, PORTFOLIO_COLORS
from foliotx.schemas.ledger import TxType
from foliotx.services import backup

D = Decimal


def legacy_document():
    """Single-portfolio backup from before portfolios existed."""
    return {
        "assets": [{
            "id": "a1",
            "ticker": "BTC",
            "quantity": "99",
            "currentPrice": "40000",
            "notes": "kept as-is",
            "transactions": [
                {"id": "t1", "type": "BUY", "quantity": "2", "pricePerCoin": "100",
                 "totalCost": "200", "date": "2024-01-05T10:30:00.000Z"},
                {"id": "t2", "type": "DEPOSIT", "quantity": "1", "pricePerCoin": "300",
                 "totalCost": "300", "date": "2024-02-01"},
            ],
        }],
        "history": [{"date": "2024-01-05", "totalValue": 200}],
    }


def test_legacy_single_portfolio_backup():
    bundle = backup.migrate_bundle(legacy_document())

    (portfolio,) = bundle.portfolios
    assert portfolio.name == DEFAULT_PORTFOLIO_NAME
    assert portfolio.color == PORTFOLIO_COLORS[0]
    assert portfolio.closed_positions == []
    assert portfolio.history == [{"date": "2024-01-05", "totalValue": 200}]

    (asset,) = portfolio.assets
    assert asset.asset_type == "CRYPTO"
    assert asset.currency == "USD"
    # Stored aggregates are ignored and rebuilt
    assert asset.quantity == D("3")
    assert asset.total_cost_basis == D("500")
    assert asset.model_extra["notes"] == "kept as-is"

    buy, deposit = asset.transactions
    assert buy.type == TxType.BUY
    assert buy.date == date(2024, 1, 5)
    assert buy.tag == "DCA"
    assert buy.created_at == datetime(2024, 1, 5, 10, 30, tzinfo=timezone.utc)
    assert deposit.created_at == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert (buy.sequence, deposit.sequence) == (1, 2)


def test_bare_list_of_portfolios():
    raw = [
        {"id": "p1", "name": "Trading", "assets": []},
        {"id": "p2", "name": "Savings", "assets": []},
    ]
    bundle = backup.migrate_bundle(raw)

    assert [p.name for p in bundle.portfolios] == ["Trading", "Savings"]
    assert [p.color for p in bundle.portfolios] == PORTFOLIO_COLORS[:2]
    assert bundle.deleted_portfolios == []


def test_current_bundle_keeps_archive_and_snapshots():
    raw = {
        "portfolios": [{"id": "p1", "name": "Trading", "color": "#000000", "assets": [{
            "ticker": "ETH",
            "transactions": [
                {"id": "x", "type": "DEPOSIT", "quantity": "1", "totalCost": "10",
                 "date": "2024-01-01", "sequence": 7, "tag": "Airdrop"},
                {"id": "y", "type": "DEPOSIT", "quantity": "1", "totalCost": "10",
                 "date": "2024-01-02"},
            ],
        }]}],
        "deletedPortfolios": [{"id": "old", "name": "Retired"}],
        "priceSnapshots": {"ETH": {"price": 3000}},
    }
    bundle = backup.migrate_bundle(raw)

    assert bundle.portfolios[0].color == "#000000"
    first, second = bundle.portfolios[0].assets[0].transactions
    assert first.tag == "Airdrop"
    assert (first.sequence, second.sequence) == (7, 8)
    assert [p.id for p in bundle.deleted_portfolios] == ["old"]
    assert bundle.price_snapshots == {"ETH": {"price": 3000}}


def test_empty_backup_gets_a_default_portfolio():
    bundle = backup.migrate_bundle([])
    assert [p.name for p in bundle.portfolios] == [DEFAULT_PORTFOLIO_NAME]


@pytest.mark.parametrize("raw", [
    {"something": "else"},
    "portfolios",
    42,
    [1, 2, 3],
])
def test_unrecognized_backup_is_rejected(raw):
    with pytest.raises(ValueError):
        backup.migrate_bundle(raw)


def test_invalid_transaction_is_rejected():
    raw = {"assets": [{"ticker": "BTC", "transactions": [{"type": "GIFT", "quantity": "1", "date": "2024-01-01"}]}]}
    with pytest.raises(ValueError, match="Invalid backup contents"):
        backup.migrate_bundle(raw)


def test_import_replaces_stored_ledger(test_db):
    backup.load_portfolios(test_db)  # seeds the default portfolio

    backup.import_bundle(test_db, legacy_document())
    portfolios = backup.load_portfolios(test_db)

    assert len(portfolios) == 1
    assert portfolios[0].assets[0].quantity == D("3")

    exported = backup.export_bundle(test_db)
    assert [p.id for p in exported.portfolios] == [portfolios[0].id]
    assert exported.deleted_portfolios == []

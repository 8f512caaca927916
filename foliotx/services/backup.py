"""
foliotx/services/backup.py

Persistence of the ledger and JSON export/import.

 - load_portfolios / save_portfolios: the storage boundary the routers use
   around every pure engine call (under ledger_lock, one writer at a time)
 - export_bundle: {portfolios, deletedPortfolios, priceSnapshots, exportedAt}
 - migrate_bundle / import_bundle: accept the current bundle, a bare list of
   portfolios, or the legacy single-portfolio {assets, history} shape, and
   bring older documents up to date:
     * closedPositions defaults to []
     * asset currency 'USD', asset type 'CRYPTO'
     * transaction tag 'DCA', createdAt from date
     * sequence numbers assigned in stored order
   Asset aggregates are recomputed on import, never trusted from the file.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from foliotx.constants import (
    DEFAULT_ASSET_TYPE,
    DEFAULT_CURRENCY,
    DEFAULT_PORTFOLIO_NAME,
    DEFAULT_TAG,
    PORTFOLIO_COLORS,
)
from foliotx.models.portfolio import DeletedPortfolioRecord, PortfolioRecord, PriceSnapshotRecord
from foliotx.schemas.ledger import Portfolio, PortfolioBundle, new_id
from foliotx.services.lots import with_transactions
from foliotx.services.portfolio import default_portfolio

logger = logging.getLogger(__name__)

# Single writer for the whole ledger: load -> engine -> save happens under it
ledger_lock = threading.Lock()


# ------------------------------------------------------------------------------
# Storage
# ------------------------------------------------------------------------------
def load_portfolios(db: Session) -> List[Portfolio]:
    """All live portfolios in display order. Seeds 'Main Portfolio' if empty."""
    records = db.query(PortfolioRecord).order_by(PortfolioRecord.position.asc()).all()
    if not records:
        seeded = [default_portfolio()]
        save_portfolios(db, seeded)
        logger.info(f"[Storage] Seeded '{DEFAULT_PORTFOLIO_NAME}'")
        return seeded
    return [Portfolio.model_validate_json(record.document) for record in records]


def save_portfolios(db: Session, portfolios: List[Portfolio]) -> None:
    """Replace the stored portfolios with 'portfolios' in one commit."""
    existing = {record.id: record for record in db.query(PortfolioRecord).all()}
    try:
        for position, portfolio in enumerate(portfolios):
            document = portfolio.model_dump_json(by_alias=True)
            record = existing.pop(portfolio.id, None)
            if record is None:
                db.add(PortfolioRecord(
                    id=portfolio.id,
                    name=portfolio.name,
                    position=position,
                    document=document,
                    created_at=portfolio.created_at,
                ))
            else:
                record.name = portfolio.name
                record.position = position
                record.document = document
        for record in existing.values():
            db.delete(record)
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"[Storage] Failed to save portfolios: {e}")
        db.rollback()
        raise
    logger.debug(f"[Storage] Saved {len(portfolios)} portfolio(s)")


def archive_portfolio(db: Session, portfolio: Portfolio) -> None:
    """Keep a deleted portfolio so it travels with the next export."""
    db.add(DeletedPortfolioRecord(
        portfolio_id=portfolio.id,
        document=portfolio.model_dump_json(by_alias=True),
    ))
    db.commit()


def load_deleted_portfolios(db: Session) -> List[Portfolio]:
    records = db.query(DeletedPortfolioRecord).order_by(DeletedPortfolioRecord.id.asc()).all()
    return [Portfolio.model_validate_json(record.document) for record in records]


def load_price_snapshots(db: Session) -> Dict[str, Any]:
    return {record.ticker: json.loads(record.document) for record in db.query(PriceSnapshotRecord).all()}


def save_price_snapshots(db: Session, snapshots: Dict[str, Any]) -> None:
    db.query(PriceSnapshotRecord).delete()
    for ticker, payload in snapshots.items():
        db.add(PriceSnapshotRecord(ticker=ticker, document=json.dumps(payload)))
    db.commit()


# ------------------------------------------------------------------------------
# Export
# ------------------------------------------------------------------------------
def export_bundle(db: Session) -> PortfolioBundle:
    return PortfolioBundle(
        portfolios=load_portfolios(db),
        deleted_portfolios=load_deleted_portfolios(db),
        price_snapshots=load_price_snapshots(db),
    )


# ------------------------------------------------------------------------------
# Import & migration
# ------------------------------------------------------------------------------
def _timestamp_from_date(value: Any) -> Any:
    """'2024-01-05' -> '2024-01-05T00:00:00Z' so it parses as a UTC datetime."""
    if isinstance(value, str) and len(value) == 10:
        return f"{value}T00:00:00Z"
    return value


def _migrate_transaction(raw: Dict[str, Any]) -> Dict[str, Any]:
    tx = dict(raw)
    if not tx.get("tag"):
        tx["tag"] = DEFAULT_TAG
    if not tx.get("createdAt"):
        tx["createdAt"] = _timestamp_from_date(tx.get("date")) or datetime.now(timezone.utc).isoformat()
    return tx


def _migrate_asset(raw: Dict[str, Any]) -> Dict[str, Any]:
    asset = dict(raw)
    asset["assetType"] = asset.get("assetType") or DEFAULT_ASSET_TYPE
    asset["currency"] = asset.get("currency") or DEFAULT_CURRENCY
    asset["transactions"] = [_migrate_transaction(tx) for tx in asset.get("transactions") or []]
    return asset


def _migrate_portfolio(raw: Dict[str, Any], index: int) -> Dict[str, Any]:
    portfolio = dict(raw)
    portfolio["id"] = portfolio.get("id") or new_id()
    portfolio["name"] = portfolio.get("name") or DEFAULT_PORTFOLIO_NAME
    portfolio["color"] = portfolio.get("color") or PORTFOLIO_COLORS[index % len(PORTFOLIO_COLORS)]
    portfolio["closedPositions"] = portfolio.get("closedPositions") or []
    portfolio["history"] = portfolio.get("history") or []
    portfolio["settings"] = portfolio.get("settings") or {}
    portfolio["assets"] = [_migrate_asset(asset) for asset in portfolio.get("assets") or []]
    return portfolio


def _assign_sequences(portfolios: List[Dict[str, Any]]) -> None:
    """Give transactions without a sequence one, in stored order, after the highest in use."""
    transactions = [
        tx for p in portfolios for asset in p["assets"] for tx in asset["transactions"]
    ]
    counter = max((tx.get("sequence") or 0 for tx in transactions), default=0)
    for tx in transactions:
        if not tx.get("sequence"):
            counter += 1
            tx["sequence"] = counter


def _recomputed(portfolio: Portfolio) -> Portfolio:
    assets = [with_transactions(asset, asset.transactions) for asset in portfolio.assets]
    return portfolio.model_copy(update={"assets": assets})


def migrate_bundle(raw: Any) -> PortfolioBundle:
    """
    Normalize any supported backup shape into a PortfolioBundle.
    Raises ValueError for anything unrecognizable.
    """
    deleted: List[Dict[str, Any]] = []
    snapshots: Dict[str, Any] = {}
    if isinstance(raw, list):
        portfolios = raw
    elif isinstance(raw, dict) and isinstance(raw.get("portfolios"), list):
        portfolios = raw["portfolios"]
        deleted = raw.get("deletedPortfolios") or []
        snapshots = raw.get("priceSnapshots") or {}
    elif isinstance(raw, dict) and isinstance(raw.get("assets"), list):
        logger.info("[Backup] Migrating legacy single-portfolio backup")
        portfolios = [{
            "name": DEFAULT_PORTFOLIO_NAME,
            "assets": raw["assets"],
            "history": raw.get("history") or [],
        }]
    else:
        raise ValueError("Unrecognized backup format: expected 'portfolios' or 'assets'.")

    if not all(isinstance(p, dict) for p in portfolios + deleted):
        raise ValueError("Unrecognized backup format: portfolios must be objects.")
    migrated = [_migrate_portfolio(p, i) for i, p in enumerate(portfolios)]
    migrated_deleted = [_migrate_portfolio(p, i) for i, p in enumerate(deleted)]
    _assign_sequences(migrated + migrated_deleted)

    try:
        bundle = PortfolioBundle.model_validate({
            "portfolios": migrated,
            "deletedPortfolios": migrated_deleted,
            "priceSnapshots": snapshots,
        })
    except ValidationError as e:
        raise ValueError(f"Invalid backup contents: {e.error_count()} error(s); first: {e.errors()[0]['msg']}") from e

    if not bundle.portfolios:
        bundle.portfolios = [default_portfolio()]
    bundle.portfolios = [_recomputed(p) for p in bundle.portfolios]
    return bundle


def import_bundle(db: Session, raw: Any) -> PortfolioBundle:
    """Replace everything stored with the migrated contents of 'raw'."""
    bundle = migrate_bundle(raw)
    try:
        db.query(DeletedPortfolioRecord).delete()
        for portfolio in bundle.deleted_portfolios:
            db.add(DeletedPortfolioRecord(
                portfolio_id=portfolio.id,
                document=portfolio.model_dump_json(by_alias=True),
            ))
        save_portfolios(db, bundle.portfolios)
        save_price_snapshots(db, bundle.price_snapshots)
    except SQLAlchemyError as e:
        logger.error(f"[Backup] Import failed: {e}")
        db.rollback()
        raise
    logger.info(
        f"[Backup] Imported {len(bundle.portfolios)} portfolio(s), "
        f"{len(bundle.deleted_portfolios)} archived"
    )
    return bundle

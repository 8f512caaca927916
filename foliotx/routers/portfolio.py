"""
foliotx/routers/portfolio.py

Router for portfolios and whole-asset operations:
 - list / create / rename / delete portfolios (deleted ones are archived)
 - swap chain preview for a ticker
 - asset removal preview + delete (409 until confirm=true)
 - merge an external price quote into an asset
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from foliotx.database import get_db
from foliotx.routers.common import commit_result, raise_for_missing
from foliotx.schemas.ledger import ChainLink, MutationResult, Portfolio, RemovalPlan
from foliotx.schemas.transaction import PortfolioCreate, PortfolioRename, PriceQuote
from foliotx.services import backup, reversal
from foliotx.services import portfolio as portfolio_service
from foliotx.services.chain import find_chain

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_or_404(portfolios: List[Portfolio], portfolio_id: str) -> Portfolio:
    portfolio = next((p for p in portfolios if p.id == portfolio_id), None)
    if portfolio is None:
        raise HTTPException(status_code=404, detail="Portfolio not found.")
    return portfolio


@router.get("/", response_model=List[Portfolio])
def list_portfolios(db: Session = Depends(get_db)):
    """All portfolios in display order; a fresh database gets 'Main Portfolio'."""
    with backup.ledger_lock:
        return backup.load_portfolios(db)


@router.post("/", response_model=Portfolio, status_code=201)
def create_portfolio(body: PortfolioCreate, db: Session = Depends(get_db)):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = commit_result(db, portfolio_service.create_portfolio(portfolios, body.name))
        return _get_or_404(result.portfolios, result.created_ids[0])


@router.get("/{portfolio_id}", response_model=Portfolio)
def get_portfolio(portfolio_id: str, db: Session = Depends(get_db)):
    with backup.ledger_lock:
        return _get_or_404(backup.load_portfolios(db), portfolio_id)


@router.patch("/{portfolio_id}", response_model=Portfolio)
def rename_portfolio(portfolio_id: str, body: PortfolioRename, db: Session = Depends(get_db)):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = commit_result(db, portfolio_service.rename_portfolio(portfolios, portfolio_id, body.name))
        return _get_or_404(result.portfolios, portfolio_id)


@router.delete("/{portfolio_id}", status_code=204)
def delete_portfolio(portfolio_id: str, db: Session = Depends(get_db)):
    """
    Removes the portfolio (never the last one). Its document is archived so
    it is still part of the next export.
    """
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = commit_result(db, portfolio_service.delete_portfolio(portfolios, portfolio_id))
        backup.archive_portfolio(db, _get_or_404(portfolios, portfolio_id))
        logger.info(f"[Portfolio] Archived {portfolio_id}; {len(result.portfolios)} remaining")
    return None


@router.get("/{portfolio_id}/chain/{ticker}", response_model=List[ChainLink])
def preview_chain(portfolio_id: str, ticker: str, db: Session = Depends(get_db)):
    """
    Swap chain starting at 'ticker': every downstream sale of its proceeds.
    Empty when nothing bought with this asset has been sold on.
    """
    with backup.ledger_lock:
        portfolio = _get_or_404(backup.load_portfolios(db), portfolio_id)
    return find_chain(ticker.strip().upper(), portfolio.assets)


@router.get("/{portfolio_id}/assets/{asset_id}/removal", response_model=RemovalPlan)
def preview_asset_removal(portfolio_id: str, asset_id: str, db: Session = Depends(get_db)):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
    _get_or_404(portfolios, portfolio_id)
    return raise_for_missing(reversal.plan_asset_removal(portfolios, portfolio_id, asset_id))


@router.delete("/{portfolio_id}/assets/{asset_id}", response_model=MutationResult)
def delete_asset(
    portfolio_id: str,
    asset_id: str,
    confirm: bool = Query(False, description="Accept the cascade described by the removal preview."),
    db: Session = Depends(get_db),
):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        _get_or_404(portfolios, portfolio_id)
        result = reversal.remove_asset(portfolios, portfolio_id, asset_id, confirmed=confirm)
        return commit_result(db, result)


@router.put("/{portfolio_id}/assets/{asset_id}/price", response_model=MutationResult)
def update_asset_price(
    portfolio_id: str,
    asset_id: str,
    quote: PriceQuote,
    db: Session = Depends(get_db),
):
    """Merge a price lookup. Transactions and quantities are never touched."""
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        _get_or_404(portfolios, portfolio_id)
        result = portfolio_service.apply_price_quote(portfolios, portfolio_id, asset_id, quote)
        return commit_result(db, result)

"""
foliotx/services/portfolio.py

Portfolio management and the merge point for external price lookups.
Same contract as the ledger engines: portfolios in, MutationResult out.
"""

import logging
from datetime import datetime, timezone
from typing import Sequence

from foliotx.constants import DEFAULT_PORTFOLIO_NAME, PORTFOLIO_COLORS
from foliotx.schemas.ledger import MutationResult, Portfolio
from foliotx.schemas.transaction import PriceQuote
from foliotx.services.transaction import declined, find_portfolio, replace_portfolio

logger = logging.getLogger(__name__)


def default_portfolio() -> Portfolio:
    return Portfolio(name=DEFAULT_PORTFOLIO_NAME, color=PORTFOLIO_COLORS[0])


def create_portfolio(portfolios: Sequence[Portfolio], name: str) -> MutationResult:
    color = PORTFOLIO_COLORS[len(portfolios) % len(PORTFOLIO_COLORS)]
    created = Portfolio(name=name, color=color)
    logger.info(f"[Portfolio] Created '{name}' ({created.id})")
    return MutationResult(portfolios=list(portfolios) + [created], created_ids=[created.id])


def rename_portfolio(portfolios: Sequence[Portfolio], portfolio_id: str, name: str) -> MutationResult:
    portfolio = find_portfolio(portfolios, portfolio_id)
    if portfolio is None:
        return declined(portfolios, "Portfolio not found.")
    return MutationResult(portfolios=replace_portfolio(portfolios, portfolio.model_copy(update={"name": name})))


def delete_portfolio(portfolios: Sequence[Portfolio], portfolio_id: str) -> MutationResult:
    """The last portfolio can never be deleted."""
    if find_portfolio(portfolios, portfolio_id) is None:
        return declined(portfolios, "Portfolio not found.")
    if len(portfolios) <= 1:
        return declined(portfolios, "Cannot delete the last portfolio!")
    logger.info(f"[Portfolio] Deleted {portfolio_id}")
    return MutationResult(portfolios=[p for p in portfolios if p.id != portfolio_id])


def apply_price_quote(portfolios: Sequence[Portfolio], portfolio_id: str, asset_id: str,
                      quote: PriceQuote) -> MutationResult:
    """
    Merge a price lookup into an asset. Only price/name/currency/error are
    touched, never transactions or quantities. A failed lookup keeps the
    previous price and flags the asset.
    """
    portfolio = find_portfolio(portfolios, portfolio_id)
    asset = portfolio.find_asset(asset_id) if portfolio else None
    if asset is None:
        return declined(portfolios, "Asset not found.")

    if quote.error or quote.price is None:
        error = quote.error or "No price returned"
        logger.warning(f"[Price] {asset.ticker}: lookup failed ({error}); keeping {asset.current_price}")
        updated = asset.model_copy(update={"error": error})
    else:
        updated = asset.model_copy(update={
            "current_price": quote.price,
            "name": quote.display_name or asset.name,
            "currency": (quote.currency or asset.currency).upper(),
            "last_updated": datetime.now(timezone.utc),
            "error": None,
        })
    assets = [updated if a.id == asset.id else a for a in portfolio.assets]
    return MutationResult(portfolios=replace_portfolio(portfolios, portfolio.model_copy(update={"assets": assets})))

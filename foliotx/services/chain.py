"""
foliotx/services/chain.py

Swap-chain tracking. A SELL whose proceeds went into another ticker is an
edge from the sold ticker to the proceeds ticker; a chain is every edge
reachable from a starting ticker (BTC sold for ETH, ETH later sold for SOL).
Deleting anything mid-chain would orphan the downstream P&L, so the
reversal engine refuses while a chain exists.
"""

from typing import AbstractSet, Iterator, List, Sequence, Tuple

from foliotx.schemas.ledger import Asset, ChainLink, Transaction, TxType
from foliotx.services.currency import base_symbol


def _proceeds_sells(ticker: str, assets: Sequence[Asset]) -> List[Tuple[Asset, Transaction]]:
    """SELLs held under 'ticker' that paid out into some other asset."""
    return [
        (asset, tx)
        for asset in assets
        if base_symbol(asset.ticker) == ticker
        for tx in asset.transactions
        if tx.type == TxType.SELL and tx.proceeds_currency
    ]


def find_chain(
    start_ticker: str,
    assets: Sequence[Asset],
    visited: AbstractSet[str] = frozenset(),
) -> List[ChainLink]:
    """
    Depth-first walk over SELL edges starting at 'start_ticker'. Links come
    back in discovery order (BTC->ETH before ETH->SOL). Tickers in 'visited'
    are treated as already explored; the set is copied, never mutated, so a
    cycle (A->B->A) ends instead of looping.
    """
    seen = set(visited)
    chain = []

    def expand(ticker: str) -> Iterator[Tuple[Asset, Transaction]]:
        if ticker in seen:
            return iter(())
        seen.add(ticker)
        return iter(_proceeds_sells(ticker, assets))

    stack = [expand(base_symbol(start_ticker))]
    while stack:
        edge = next(stack[-1], None)
        if edge is None:
            stack.pop()
            continue
        asset, tx = edge
        chain.append(ChainLink(
            ticker=asset.ticker,
            sold_for=tx.proceeds_currency,
            asset_id=asset.id,
            transaction=tx,
        ))
        stack.append(expand(base_symbol(tx.proceeds_currency)))
    return chain


def sells_into(ticker: str, assets: Sequence[Asset]) -> List[Tuple[Asset, Transaction]]:
    """Every SELL whose proceeds landed in 'ticker'."""
    wanted = base_symbol(ticker)
    return [
        (asset, tx)
        for asset in assets
        for tx in asset.transactions
        if tx.type == TxType.SELL
        and tx.proceeds_currency
        and base_symbol(tx.proceeds_currency) == wanted
    ]


def describe_chain(chain: Sequence[ChainLink]) -> str:
    """'BTC -> ETH -> SOL' for a linear chain."""
    if not chain:
        return ""
    path = [chain[0].ticker] + [link.sold_for for link in chain]
    return " → ".join(path)


def reversal_steps(chain: Sequence[ChainLink]) -> List[str]:
    """The sales to undo, most recent hop first."""
    return [
        f"{step}. Delete or reverse the {link.ticker}→{base_symbol(link.sold_for)} sale "
        f"({link.transaction.quantity} {link.ticker} on {link.transaction.date.isoformat()})"
        for step, link in enumerate(reversed(chain), start=1)
    ]

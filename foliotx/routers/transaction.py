"""
foliotx/routers/transaction.py

Router for ledger transactions inside a portfolio. Endpoints stay thin:
load the ledger, call the pure engine in services/transaction.py or
services/reversal.py, persist the result. All of it runs under
backup.ledger_lock so reads and writes of the ledger never interleave.

Removal is two-step for any cascade: GET .../removal returns the plan
(what would happen, and whether confirmation is needed); DELETE performs
it, answering 409 until called with confirm=true.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from foliotx.database import get_db
from foliotx.routers.common import commit_result, get_rates_provider, raise_for_missing
from foliotx.schemas.ledger import MutationResult, RemovalPlan
from foliotx.schemas.transaction import (
    BuyCreate,
    DepositCreate,
    IncomeCreate,
    SwapCreate,
    TransactionUpdate,
    TransferCreate,
    WithdrawalCreate,
)
from foliotx.services import backup, reversal
from foliotx.services import transaction as tx_service
from foliotx.services.currency import RatesProvider, resolve_rates

router = APIRouter()


@router.post("/{portfolio_id}/transactions/deposit", response_model=MutationResult)
def create_deposit(
    portfolio_id: str,
    body: DepositCreate,
    db: Session = Depends(get_db),
    rates_provider: RatesProvider = Depends(get_rates_provider),
):
    """External funds entering the portfolio. Creates the asset on first use."""
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.record_deposit(
            portfolios, portfolio_id, rates=resolve_rates(rates_provider, body.date), **body.model_dump(),
        )
        return commit_result(db, result)


@router.post("/{portfolio_id}/transactions/income", response_model=MutationResult)
def create_income(
    portfolio_id: str,
    body: IncomeCreate,
    db: Session = Depends(get_db),
    rates_provider: RatesProvider = Depends(get_rates_provider),
):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.record_income(
            portfolios, portfolio_id, rates=resolve_rates(rates_provider, body.date), **body.model_dump(),
        )
        return commit_result(db, result)


@router.post("/{portfolio_id}/transactions/buy", response_model=MutationResult)
def create_buy(
    portfolio_id: str,
    body: BuyCreate,
    db: Session = Depends(get_db),
    rates_provider: RatesProvider = Depends(get_rates_provider),
):
    """Purchase paid with funds the ledger does not track."""
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.record_buy(
            portfolios, portfolio_id, rates=resolve_rates(rates_provider, body.date), **body.model_dump(),
        )
        return commit_result(db, result)


@router.post("/{portfolio_id}/transactions/withdrawal", response_model=MutationResult)
def create_withdrawal(
    portfolio_id: str,
    body: WithdrawalCreate,
    db: Session = Depends(get_db),
    rates_provider: RatesProvider = Depends(get_rates_provider),
):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.record_withdrawal(
            portfolios, portfolio_id, rates=resolve_rates(rates_provider, body.date), **body.model_dump(),
        )
        return commit_result(db, result)


@router.post("/{portfolio_id}/transactions/swap", response_model=MutationResult)
def create_swap(
    portfolio_id: str,
    body: SwapCreate,
    db: Session = Depends(get_db),
    rates_provider: RatesProvider = Depends(get_rates_provider),
):
    """
    Spend a held asset to buy another:
      - SELL on the source (FIFO cost basis, closed positions unless cash)
      - BUY on the destination, linked to the SELL by a shared pair id
    """
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.record_swap(
            portfolios, portfolio_id, rates=resolve_rates(rates_provider, body.date), **body.model_dump(),
        )
        return commit_result(db, result)


@router.post("/{portfolio_id}/transactions/transfer", response_model=MutationResult)
def create_transfer(
    portfolio_id: str,
    body: TransferCreate,
    db: Session = Depends(get_db),
    rates_provider: RatesProvider = Depends(get_rates_provider),
):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.record_transfer(
            portfolios, portfolio_id, rates=resolve_rates(rates_provider, body.date), **body.model_dump(),
        )
        return commit_result(db, result)


@router.put("/{portfolio_id}/assets/{asset_id}/transactions/{transaction_id}", response_model=MutationResult)
def update_transaction(
    portfolio_id: str,
    asset_id: str,
    transaction_id: str,
    body: TransactionUpdate,
    db: Session = Depends(get_db),
):
    """Edit quantity/price/date/tag; totalCost is re-derived server side."""
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = tx_service.edit_transaction(
            portfolios, portfolio_id, asset_id, transaction_id, **body.model_dump(),
        )
        return commit_result(db, result)


@router.get("/{portfolio_id}/assets/{asset_id}/transactions/{transaction_id}/removal", response_model=RemovalPlan)
def preview_transaction_removal(
    portfolio_id: str,
    asset_id: str,
    transaction_id: str,
    db: Session = Depends(get_db),
):
    """What deleting this transaction would do. Changes nothing."""
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
    return raise_for_missing(
        reversal.plan_transaction_removal(portfolios, portfolio_id, asset_id, transaction_id)
    )


@router.delete("/{portfolio_id}/assets/{asset_id}/transactions/{transaction_id}", response_model=MutationResult)
def delete_transaction(
    portfolio_id: str,
    asset_id: str,
    transaction_id: str,
    confirm: bool = Query(False, description="Accept the cascade described by the removal preview."),
    db: Session = Depends(get_db),
):
    with backup.ledger_lock:
        portfolios = backup.load_portfolios(db)
        result = reversal.remove_transaction(
            portfolios, portfolio_id, asset_id, transaction_id, confirmed=confirm,
        )
        return commit_result(db, result)

"""
foliotx/routers/common.py

Glue shared by the routers: turning engine results into HTTP responses and
persisting accepted mutations.

Status codes:
 - 404: the named portfolio/asset/transaction does not exist
 - 400: validation failed (insufficient balance, chain, dangling transfer, ...)
 - 409: the removal has side effects and the caller did not pass confirm=true;
        'detail.message' is the text to show before retrying
"""

from fastapi import HTTPException
from sqlalchemy.orm import Session

from foliotx.schemas.ledger import MutationResult, RemovalPlan
from foliotx.services import backup
from foliotx.services.currency import FallbackRatesProvider, RatesProvider

NOT_FOUND_PREFIXES = ("Portfolio not found", "Asset not found", "Transaction not found")

_rates_provider = FallbackRatesProvider()


def _is_missing(error) -> bool:
    return bool(error) and error.startswith(NOT_FOUND_PREFIXES)


def get_rates_provider() -> RatesProvider:
    """FastAPI dependency; override in tests or deployments with a live source."""
    return _rates_provider


def raise_for_result(result: MutationResult) -> None:
    if result.applied:
        return
    validation = result.validation
    if validation.valid and validation.requires_confirmation:
        raise HTTPException(
            status_code=409,
            detail={
                "message": validation.confirmation_message,
                "requiresConfirmation": True,
            },
        )
    if _is_missing(validation.error):
        raise HTTPException(status_code=404, detail=validation.error)
    raise HTTPException(status_code=400, detail=validation.error)


def commit_result(db: Session, result: MutationResult) -> MutationResult:
    """Raise for a declined result, otherwise persist it and hand it back."""
    raise_for_result(result)
    backup.save_portfolios(db, result.portfolios)
    return result


def raise_for_missing(plan: RemovalPlan) -> RemovalPlan:
    """Removal previews answer 200 with the plan, except for unknown ids."""
    if _is_missing(plan.validation.error):
        raise HTTPException(status_code=404, detail=plan.validation.error)
    return plan

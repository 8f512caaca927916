"""
foliotx/services/currency.py

Currency helpers for the ledger:
 - is_cash_asset(): the explicit cash/fiat/stablecoin classification that
   decides whether spending an asset is a realized disposal
 - detect_native_currency(): the currency an instrument is priced in
 - convert(): rate-map conversion with the fallback map behind it
 - RatesProvider / resolve_rates(): the seam for dated FX snapshots. The
   ledger only consumes rates; fetching them lives outside this package.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional, Protocol

from foliotx.constants import (
    DEFAULT_CURRENCY,
    FALLBACK_RATES,
    FIAT_CURRENCIES,
    STABLECOINS,
    TICKER_SUFFIX_CURRENCY,
)

logger = logging.getLogger(__name__)

RateMap = Mapping[str, Decimal]


def base_symbol(ticker: str) -> str:
    """'BTC', 'btc', 'BTC (cold)' -> 'BTC'."""
    return ticker.strip().upper().split(" ")[0]


def is_cash_asset(ticker: str) -> bool:
    """
    True for fiat currencies and USD stablecoins. Spending these in a swap
    is not a taxable disposal, so no closed positions are produced.
    """
    symbol = base_symbol(ticker)
    return symbol in FIAT_CURRENCIES or symbol in STABLECOINS


def detect_native_currency(ticker: str) -> str:
    """
    Currency an instrument is quoted in. Fiat codes are their own currency,
    stablecoins and crypto are USD, listed stocks follow the exchange suffix.
    """
    symbol = base_symbol(ticker)
    if symbol in FIAT_CURRENCIES:
        return symbol
    if symbol in STABLECOINS:
        return DEFAULT_CURRENCY
    for suffix, currency in TICKER_SUFFIX_CURRENCY.items():
        if symbol.endswith(suffix):
            return currency
    return DEFAULT_CURRENCY


def _rate(currency: str, rates: Optional[RateMap]) -> Decimal:
    currency = currency.upper()
    if rates and currency in rates and rates[currency]:
        return Decimal(str(rates[currency]))
    if currency in FALLBACK_RATES:
        return FALLBACK_RATES[currency]
    logger.warning(f"[Currency] No rate for {currency}; treating it as 1:1 with USD")
    return Decimal("1")


def convert(amount: Decimal, from_currency: str, to_currency: str, rates: Optional[RateMap] = None) -> Decimal:
    """
    Convert using a USD-based map (units of currency per 1 USD):
    amount / rate[from] * rate[to]. Missing entries fall back to
    FALLBACK_RATES.
    """
    if from_currency.upper() == to_currency.upper():
        return amount
    return amount / _rate(from_currency, rates) * _rate(to_currency, rates)


class RatesProvider(Protocol):
    def rates_for_date(self, day: date) -> RateMap:
        ...


class FallbackRatesProvider:
    """Serves the static fallback map for every date."""

    def rates_for_date(self, day: date) -> RateMap:
        return dict(FALLBACK_RATES)


def resolve_rates(provider: Optional[RatesProvider], day: date) -> dict:
    """
    Rates snapshot to stamp on transactions dated 'day'. A failing or empty
    provider never blocks the ledger: the fallback map is used instead.
    """
    if provider is None:
        return dict(FALLBACK_RATES)
    try:
        rates = provider.rates_for_date(day)
    except Exception as e:
        logger.warning(f"[Currency] Rate lookup for {day} failed ({e}); using fallback rates")
        return dict(FALLBACK_RATES)
    if not rates:
        logger.warning(f"[Currency] No rates returned for {day}; using fallback rates")
        return dict(FALLBACK_RATES)
    merged = dict(FALLBACK_RATES)
    merged.update({code.upper(): Decimal(str(value)) for code, value in rates.items()})
    return merged

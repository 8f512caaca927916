"""
Ledger constants shared by services, schemas and routers.
Transaction groupings, default tags, cash instruments and the fallback FX map.
"""

import os
from decimal import Decimal

# Transaction type groupings (see schemas.ledger.TxType)
ACQUISITION_TYPES = ("BUY", "DEPOSIT", "INCOME")
DISPOSAL_TYPES = ("SELL", "WITHDRAWAL", "TRANSFER")

# Default tags applied when the caller leaves the tag blank
DEFAULT_TAG = "DCA"
DEFAULT_INCOME_TAG = "Research"
DEFAULT_WITHDRAWAL_TAG = "Profit-Taking"
DEFAULT_TRANSFER_TAG = "Strategic"
RESTORATION_TAG = "Restoration"

# Reporting currency for realized P&L
WORKING_CURRENCY = os.getenv("FOLIOTX_WORKING_CURRENCY", "USD").upper()
DEFAULT_CURRENCY = "USD"
DEFAULT_ASSET_TYPE = "CRYPTO"

FIAT_CURRENCIES = frozenset({"USD", "CHF", "EUR", "GBP", "JPY", "CAD", "AUD"})
STABLECOINS = frozenset({"USDT", "USDC", "DAI"})

# Units of currency per 1 USD, used when no dated snapshot is available
FALLBACK_RATES = {
    "USD": Decimal("1.00"),
    "CHF": Decimal("0.92"),
    "EUR": Decimal("0.93"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("110.0"),
    "CAD": Decimal("1.25"),
    "AUD": Decimal("1.35"),
}

# Exchange suffix -> listing currency (e.g. NESN.SW trades in CHF)
TICKER_SUFFIX_CURRENCY = {
    ".SW": "CHF",
    ".DE": "EUR",
    ".PA": "EUR",
    ".AS": "EUR",
    ".MI": "EUR",
    ".L": "GBP",
    ".T": "JPY",
    ".TO": "CAD",
    ".AX": "AUD",
}

DEFAULT_PORTFOLIO_NAME = "Main Portfolio"
PORTFOLIO_COLORS = [
    "#6366f1",  # Indigo
    "#10b981",  # Emerald
    "#f59e0b",  # Amber
    "#ec4899",  # Pink
    "#8b5cf6",  # Purple
    "#06b6d4",  # Cyan
    "#f43f5e",  # Rose
    "#14b8a6",  # Teal
]

# Closed position presentation precision
PNL_PRECISION = Decimal("0.01")

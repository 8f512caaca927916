#!/usr/bin/env python
"""
foliotx/main.py

FastAPI entry point for FolioTX, a multi-portfolio transaction ledger with
FIFO lot accounting and reversible swaps.

 - CORS origins come from CORS_ALLOW_ORIGINS (comma separated)
 - startup creates the tables and seeds "Main Portfolio" on a fresh database
 - /api/portfolios   portfolios, assets, chains and transactions
 - /api/backup       JSON export, import and file restore

Run locally with: python -m foliotx.main
"""

import os
import logging
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from foliotx.database import create_tables
from foliotx.routers import backup, portfolio, transaction

load_dotenv()

logger = logging.getLogger(__name__)

# Local frontend dev servers (React/Vite) and the API's own port
DEV_ORIGINS = [
    f"http://{host}:{port}"
    for port in (3000, 5173, 8000)
    for host in ("127.0.0.1", "localhost")
]


def allowed_origins():
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if not raw:
        return DEV_ORIGINS
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app = FastAPI(
    title="FolioTX Portfolio Ledger API",
    description=(
        "Deposits, income, withdrawals, swaps and transfers across portfolios, "
        "with FIFO cost basis, swap chain tracking and reversible deletion."
    ),
    version="1.0",
    redirect_slashes=True,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def prepare_ledger():
    logger.info("[Startup] Preparing ledger storage")
    create_tables()


app.include_router(portfolio.router, prefix="/api/portfolios", tags=["portfolios"])
app.include_router(transaction.router, prefix="/api/portfolios", tags=["transactions"])
app.include_router(backup.router, prefix="/api/backup", tags=["backup"])


@app.get("/")
def read_root():
    return {"message": "FolioTX API is running."}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("foliotx.main:app", host="127.0.0.1", port=int(os.getenv("PORT", "8000")), reload=False)

"""
portfolio.py

Storage records for the ledger. The ledger is document-shaped: a portfolio
owns its assets, their transactions and its closed positions, and every
mutation replaces the portfolio as a whole. Each portfolio is therefore kept
as one JSON document row rather than being spread across relational tables.

1) PortfolioRecord (live portfolios, ordered by 'position')
2) DeletedPortfolioRecord (archive of removed portfolios, exported as deletedPortfolios)
3) PriceSnapshotRecord (out-of-band price snapshots carried through export/import)
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text

from foliotx.database import Base, UTCDateTime


def _utcnow():
    return datetime.now(timezone.utc)

# ------------------------------------------------------------------------
# PORTFOLIO
# ------------------------------------------------------------------------

class PortfolioRecord(Base):
    """
    One live portfolio. 'document' holds the serialized Portfolio schema
    (assets, transactions, closed positions, settings).
    """
    __tablename__ = "portfolios"

    id = Column(String, primary_key=True, doc="Portfolio id, as used by transfers.")
    name = Column(String, nullable=False, doc="Display name.")
    position = Column(Integer, nullable=False, default=0, doc="Display/ordering index.")
    document = Column(Text, nullable=False, doc="Portfolio JSON document.")
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<PortfolioRecord(id={self.id}, name={self.name}, position={self.position})>"

# ------------------------------------------------------------------------
# DELETED PORTFOLIO (archive)
# ------------------------------------------------------------------------

class DeletedPortfolioRecord(Base):
    """
    A portfolio removed by the user. Kept so that an accidental delete can
    be recovered from an export.
    """
    __tablename__ = "deleted_portfolios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(String, nullable=False, index=True)
    document = Column(Text, nullable=False)
    deleted_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<DeletedPortfolioRecord(portfolio_id={self.portfolio_id}, deleted_at={self.deleted_at})>"

# ------------------------------------------------------------------------
# PRICE SNAPSHOT
# ------------------------------------------------------------------------

class PriceSnapshotRecord(Base):
    """
    Last known price payload per ticker. The ledger never reads it; it is
    stored so export/import round-trips the full bundle.
    """
    __tablename__ = "price_snapshots"

    ticker = Column(String, primary_key=True)
    document = Column(Text, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<PriceSnapshotRecord(ticker={self.ticker})>"

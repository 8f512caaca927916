# foliotx/models/__init__.py

"""
Centralizes model imports so Base.metadata knows every table before
create_all() runs.
"""

from foliotx.database import Base

from .portfolio import PortfolioRecord, DeletedPortfolioRecord, PriceSnapshotRecord

"""Relational store adapter (SQLAlchemy)."""

from buyer_leads.adapters.db.base import Base, UTCDateTime
from buyer_leads.adapters.db.models import Buyer, BuyerHistory
from buyer_leads.adapters.db.session import get_engine, get_session, init_db

__all__ = [
    "Base",
    "Buyer",
    "BuyerHistory",
    "UTCDateTime",
    "get_engine",
    "get_session",
    "init_db",
]

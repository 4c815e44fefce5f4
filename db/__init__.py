"""Database layer for the ScamAtlas aggregator."""

from db.database import SessionLocal, engine, get_db, init_db
from db.models import (
    Base,
    FetchJobModel,
    LocationStatModel,
    RawCommentModel,
    ScamReportModel,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Base",
    "ScamReportModel",
    "RawCommentModel",
    "FetchJobModel",
    "LocationStatModel",
]

from ..config import Settings
from .base import AdminStore, CampaignStore, StaffStore, Stores, VoteStore


def build_stores(settings: Settings) -> Stores:
    """Pick the storage backend once, at startup."""
    if settings.DATABASE_BACKEND == "mongodb":
        from .mongo import build_mongo_stores

        return build_mongo_stores(settings.MONGODB_URI, settings.MONGODB_DB)

    from .sql import build_sql_stores

    return build_sql_stores(settings.SQLALCHEMY_DATABASE_URI)


__all__ = ["AdminStore", "CampaignStore", "StaffStore", "Stores", "VoteStore", "build_stores"]

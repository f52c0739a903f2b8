"""MongoDB reader for pricing configuration documents."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from pymongo import MongoClient

from ..utils.config import Config
from ..utils.logging import get_logger
from .snapshot import COLLECTIONS, PricingSnapshot, normalize_id

logger = get_logger(__name__)

# Collection holding one document per redeemed discount
DISCOUNT_USAGE_COLLECTION = "discountUsages"


class SnapshotRepository:
    """Loads administrator-authored pricing configuration.

    The repository only reads. Incrementing a discount's usage count belongs
    to the order-placement transaction, not to pricing.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        db_name: Optional[str] = None,
        connection_url_env_key: Optional[str] = None,
        config: Optional[Config] = None,
    ) -> None:
        config = config or Config(".env")

        if connection_url_env_key:
            self._url = os.getenv(connection_url_env_key) or config.get("mongo_url")
        else:
            self._url = url or config.get("mongo_url")

        self._db = db_name or config.get("mongo_db")
        self._timeout_ms = config.get("mongo_timeout_ms", 5000)
        self._include_inactive = config.get("include_inactive", False)
        if not self._url:
            raise ValueError("DB_CONNECTION_URL is required")
        self._client: Optional[MongoClient] = None

    def __enter__(self) -> "SnapshotRepository":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def connect(self) -> None:
        if self._client is None:
            self._client = MongoClient(self._url, serverSelectionTimeoutMS=self._timeout_ms)

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _collection(self, name: str):
        if self._client is None:
            self.connect()
        return self._client[self._db][name]

    def _find(self, name: str) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"isDeleted": {"$ne": True}}
        if not self._include_inactive:
            query["isActive"] = {"$ne": False}
        return list(self._collection(name).find(query))

    def load_snapshot(self) -> PricingSnapshot:
        """Read every configuration collection into one snapshot."""
        documents = {collection: self._find(collection) for collection in COLLECTIONS.values()}
        logger.info(
            "Loaded pricing configuration from %s (%s)",
            self._db,
            ", ".join(f"{name}={len(docs)}" for name, docs in documents.items()),
        )
        return PricingSnapshot.from_documents(documents)

    def get_customer_usage(self, customer_id: str) -> Dict[str, int]:
        """Redemption counts per discount id for one customer."""
        pipeline = [
            {"$match": {"customerId": normalize_id(customer_id)}},
            {"$group": {"_id": "$discountId", "count": {"$sum": 1}}},
        ]
        return {
            normalize_id(row["_id"]): int(row["count"])
            for row in self._collection(DISCOUNT_USAGE_COLLECTION).aggregate(pipeline)
        }

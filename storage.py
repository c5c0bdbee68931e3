from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog
from bson.binary import Binary
from pymongo.database import Database

logger = structlog.get_logger(__name__)

FOLDERS = ("product-photos", "company-photos", "company-certificates", "iso-certificates")


class UnknownFolder(ValueError):
    pass


class ObjectStorage:
    """Blob store with stable public download URLs."""

    collection_name = "upload"

    def __init__(self, db: Database, public_base_url: str):
        self.db = db
        self.public_base_url = public_base_url.rstrip("/")

    def url_for(self, folder: str, key: str) -> str:
        return f"{self.public_base_url}/files/{folder}/{key}"

    def upload(self, folder: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        if folder not in FOLDERS:
            raise UnknownFolder(folder)
        key = str(uuid4())
        self.db[self.collection_name].insert_one({
            "_id": f"{folder}/{key}",
            "folder": folder,
            "content_type": content_type,
            "size": len(data),
            "data": Binary(data),
            "created_at": datetime.now(timezone.utc),
        })
        logger.info("blob_uploaded", folder=folder, key=key, size=len(data))
        return self.url_for(folder, key)

    def download(self, folder: str, key: str) -> Optional[dict]:
        doc = self.db[self.collection_name].find_one({"_id": f"{folder}/{key}"})
        if not doc:
            return None
        return {"data": bytes(doc["data"]), "content_type": doc.get("content_type", "application/octet-stream")}

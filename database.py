"""
Document tree over MongoDB.

The storefront keeps its data in one hierarchical tree addressed by
slash-separated paths such as ``user/{uid}/addtocart/{productId}``. The first
path segment names a collection, the second is the document ``_id`` and any
further segments address nested fields of that document.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Union

import structlog
from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

logger = structlog.get_logger(__name__)

Listener = Callable[[Any], None]


class InvalidPath(ValueError):
    pass


def connect(url: str, name: str) -> Database:
    client = MongoClient(url, serverSelectionTimeoutMS=5000)
    return client[name]


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def _check_key(key: str) -> str:
    if not key or "." in key or key.startswith("$") or "/" in key:
        raise InvalidPath(f"Invalid key: {key!r}")
    return key


def split_path(path: str) -> List[str]:
    segments = [s for s in path.strip("/").split("/")]
    if segments == [""]:
        raise InvalidPath("Path must not be empty")
    return [_check_key(s) for s in segments]


def _check_value(value: Any) -> Any:
    if isinstance(value, dict):
        for k, v in value.items():
            _check_key(str(k))
            _check_value(v)
    elif isinstance(value, list):
        for v in value:
            _check_value(v)
    return value


def _prune(value: Any) -> Any:
    """Empty maps and nulls read back as absent."""
    if isinstance(value, dict):
        cleaned = {}
        for k, v in value.items():
            v = _prune(v)
            if v is not None:
                cleaned[k] = v
        return cleaned or None
    if isinstance(value, list):
        return [_prune(v) for v in value]
    return value


def _overlaps(a: List[str], b: List[str]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class DocumentTree:
    def __init__(self, db: Database):
        self.db = db
        self._listeners: Dict[int, tuple] = {}
        self._next_listener = 0
        self._lock = threading.Lock()

    # ----------------------- Reads -----------------------
    def get(self, path: str) -> Any:
        segments = split_path(path)
        collection = self.db[segments[0]]
        if len(segments) == 1:
            tree = {}
            for doc in collection.find():
                key = str(doc.pop("_id"))
                tree[key] = doc
            return _prune(tree)
        if len(segments) == 2:
            doc = collection.find_one({"_id": segments[1]})
        else:
            doc = collection.find_one({"_id": segments[1]}, {".".join(segments[2:]): 1})
        if doc is None:
            return None
        doc.pop("_id", None)
        node: Any = doc
        for key in segments[2:]:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return _prune(node)

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def children(self, path: str) -> Dict[str, Any]:
        value = self.get(path)
        return value if isinstance(value, dict) else {}

    # ----------------------- Writes -----------------------
    def set(self, path: str, value: Any) -> None:
        if value is None or value == {}:
            self.remove(path)
            return
        segments = split_path(path)
        _check_value(value)
        collection = self.db[segments[0]]
        if len(segments) == 1:
            if not isinstance(value, dict):
                raise InvalidPath("A collection can only hold maps")
            collection.delete_many({})
            for key, doc in value.items():
                self._replace(collection, _check_key(key), doc)
        elif len(segments) == 2:
            self._replace(collection, segments[1], value)
        else:
            collection.update_one(
                {"_id": segments[1]},
                {"$set": {".".join(segments[2:]): value}},
                upsert=True,
            )
        self._notify(segments)

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        segments = split_path(path)
        if len(segments) == 1:
            for key, value in fields.items():
                self.set(f"{segments[0]}/{key}", value)
            return
        prefix = ".".join(segments[2:])
        to_set, to_unset = {}, {}
        for key, value in fields.items():
            dotted = f"{prefix}.{_check_key(key)}" if prefix else _check_key(key)
            if value is None:
                to_unset[dotted] = ""
            else:
                to_set[dotted] = _check_value(value)
        op: Dict[str, Any] = {}
        if to_set:
            op["$set"] = to_set
        if to_unset:
            op["$unset"] = to_unset
        if op:
            self.db[segments[0]].update_one({"_id": segments[1]}, op, upsert=bool(to_set))
            self._notify(segments)

    def new_key(self) -> str:
        return str(ObjectId())

    def push(self, path: str, value: Any) -> str:
        key = self.new_key()
        self.set(f"{path.rstrip('/')}/{key}", value)
        return key

    def remove(self, path: str) -> None:
        segments = split_path(path)
        collection = self.db[segments[0]]
        if len(segments) == 1:
            collection.delete_many({})
        elif len(segments) == 2:
            collection.delete_one({"_id": segments[1]})
        else:
            collection.update_one({"_id": segments[1]}, {"$unset": {".".join(segments[2:]): ""}})
        self._notify(segments)

    def _replace(self, collection, doc_id: str, value: Any) -> None:
        if not isinstance(value, dict):
            raise InvalidPath("A document must be a map")
        collection.replace_one({"_id": doc_id}, {"_id": doc_id, **value}, upsert=True)

    # ----------------------- Subscriptions -----------------------
    def subscribe(self, path: str, callback: Listener) -> Callable[[], None]:
        """Call ``callback`` with the value at ``path`` now and after every overlapping write.

        Each listener reads and receives one value at a time, so a callback never
        sees an older value after a newer one.
        """
        segments = split_path(path)
        delivery = threading.RLock()
        with self._lock:
            token = self._next_listener
            self._next_listener += 1
            self._listeners[token] = (segments, callback, delivery)
        with delivery:
            callback(self.get(path))

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self, written: List[str]) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for segments, callback, delivery in listeners:
            if not _overlaps(segments, written):
                continue
            try:
                with delivery:
                    callback(self.get("/".join(segments)))
            except Exception:
                logger.exception("subscriber_failed", path="/".join(segments))

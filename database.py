"""
Flat-file storage for the shop.

Each collection ("products", "orders", "users") is a single JSON array kept in
``<DATA_DIR>/<collection>.json``. Requests load a whole collection, change it in
memory and write it back. Reads never raise: a missing, unreadable or corrupt
file comes back as an empty list and the failure is logged.
"""
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))

PRODUCTS = "products"
ORDERS = "orders"
USERS = "users"

Record = Dict[str, Any]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class StorageError(Exception):
    """A collection could not be persisted."""

    def __init__(self, collection: str):
        super().__init__(f"Failed to write {collection}")
        self.collection = collection


class JsonStore:
    def __init__(self, data_dir: str = DATA_DIR):
        self.data_dir = data_dir
        # Held across read-mutate-write sequences. Only serializes requests
        # inside this process.
        self.lock = threading.RLock()

    def path(self, collection: str) -> str:
        return os.path.join(self.data_dir, f"{collection}.json")

    def read(self, collection: str) -> List[Record]:
        filepath = self.path(collection)
        if not os.path.exists(filepath):
            return []
        try:
            with open(filepath, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, list):
                raise ValueError(f"{filepath} does not hold a JSON array")
            return data
        except (OSError, ValueError):
            logger.exception("Error reading %s", filepath)
            return []

    def write(self, collection: str, records: List[Record]) -> bool:
        filepath = self.path(collection)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2, ensure_ascii=False)
            return True
        except (OSError, TypeError, ValueError):
            logger.exception("Error writing %s", filepath)
            return False

    def save(self, collection: str, records: List[Record]) -> None:
        """Like write(), but raises StorageError on failure."""
        if not self.write(collection, records):
            raise StorageError(collection)


def find_by_id(records: List[Record], record_id: str) -> Optional[Record]:
    return next((r for r in records if r.get("id") == record_id), None)


def index_of(records: List[Record], record_id: str) -> int:
    for i, r in enumerate(records):
        if r.get("id") == record_id:
            return i
    return -1


# ----------------------------------------------------------------------------
# Ids and timestamps
# ----------------------------------------------------------------------------

def generate_id() -> str:
    return str(ObjectId())


def timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def order_number(now: Optional[datetime] = None) -> str:
    """Human readable order reference built from the creation instant."""
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"ORD-{to_base36(millis).upper()}"


db = JsonStore()

"""
Server-side sessions.

A session is identified by an opaque id. The browser only carries a signed
token naming that id; the logged-in user snapshot and the cart stay here in
process memory.
"""
import logging
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

import jwt
from pydantic import BaseModel

from database import timestamp
from schemas import CartItem, Role

logger = logging.getLogger(__name__)

TOKEN_ALG = "HS256"


class CartError(Exception):
    status_code = 400
    error = "Cart error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotInCart(CartError):
    status_code = 404
    error = "Not in cart"


class StockLimitExceeded(CartError):
    error = "Stock limit"


class Cart:
    """Ordered cart lines, at most one per product."""

    def __init__(self, items: Optional[List[CartItem]] = None):
        self.items: List[CartItem] = list(items or [])

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.productId == product_id), None)

    def add(self, product_id: str, quantity: int, stock: int) -> CartItem:
        if stock < quantity:
            raise StockLimitExceeded("Not enough stock available")
        item = self.find(product_id)
        if item is not None:
            new_quantity = item.quantity + quantity
            if new_quantity > stock:
                raise StockLimitExceeded("Cannot add more than available stock")
            item.quantity = new_quantity
            return item
        item = CartItem(productId=product_id, quantity=quantity, addedAt=timestamp())
        self.items.append(item)
        return item

    def update(self, product_id: str, quantity: int, stock: Optional[int]) -> None:
        """Set a line's quantity; zero or less drops the line.

        ``stock`` is None when the product no longer exists, in which case the
        quantity is accepted as is and checkout will reject the line.
        """
        item = self.find(product_id)
        if item is None:
            raise NotInCart("Item not found in cart")
        if quantity <= 0:
            self.items.remove(item)
            return
        if stock is not None and quantity > stock:
            raise StockLimitExceeded("Quantity exceeds available stock")
        item.quantity = quantity

    def remove(self, product_id: str) -> None:
        item = self.find(product_id)
        if item is None:
            raise NotInCart("Item not found in cart")
        self.items.remove(item)

    def clear(self) -> None:
        self.items = []

    def to_list(self) -> List[dict]:
        return [item.model_dump() for item in self.items]


class SessionUser(BaseModel):
    id: str
    name: str
    email: str
    role: Role = "customer"
    avatar: Optional[str] = None


class Session:
    def __init__(self, sid: str):
        self.id = sid
        self.user: Optional[SessionUser] = None
        self.cart = Cart()
        self.created_at = time.monotonic()
        self.last_seen = self.created_at

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == "admin"

    def login(self, user: dict) -> SessionUser:
        self.user = SessionUser(
            id=user["id"],
            name=user["name"],
            email=user["email"],
            role=user.get("role", "customer"),
            avatar=user.get("avatar"),
        )
        return self.user


class SessionStore:
    def __init__(self, ttl_seconds: float = 60 * 60 * 24, purge_interval: float = 60):
        self.ttl_seconds = ttl_seconds
        self.purge_interval = purge_interval
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._last_purge = time.monotonic()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> Session:
        # every request without a cookie creates a session, so sweep here
        if time.monotonic() - self._last_purge >= self.purge_interval:
            self.purge_expired()
        session = Session(secrets.token_urlsafe(24))
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, sid: Optional[str]) -> Optional[Session]:
        if not sid:
            return None
        with self._lock:
            session = self._sessions.get(sid)
            if session is None:
                return None
            now = time.monotonic()
            if now - session.last_seen > self.ttl_seconds:
                del self._sessions[sid]
                return None
            session.last_seen = now
            return session

    def destroy(self, sid: str) -> bool:
        with self._lock:
            return self._sessions.pop(sid, None) is not None

    def purge_expired(self) -> int:
        now = time.monotonic()
        with self._lock:
            self._last_purge = now
            expired = [sid for sid, s in self._sessions.items() if now - s.last_seen > self.ttl_seconds]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Purged %d expired sessions", len(expired))
        return len(expired)


# ----------------------------------------------------------------------------
# Session token
# ----------------------------------------------------------------------------

def encode_session_token(sid: str, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode({"sid": sid, "iat": now, "exp": now + expires_delta}, secret, algorithm=TOKEN_ALG)


def decode_session_token(token: Optional[str], secret: str) -> Optional[str]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[TOKEN_ALG])
    except jwt.InvalidTokenError:
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) else None

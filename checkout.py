"""
Cart pricing and checkout.

place_order() turns a session cart into a persisted order. Every cart line is
checked against the live product collection and stock is decremented in
memory while walking the cart; nothing is written unless every line passes.
"""
import logging
from typing import Any, Dict, List, Optional

from database import (
    ORDERS,
    PRODUCTS,
    JsonStore,
    find_by_id,
    generate_id,
    order_number,
    timestamp,
)
from schemas import Address, Order, OrderItem, StatusEntry
from sessions import Session

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = 100
FLAT_SHIPPING = 9.99
TAX_RATE = 0.08

REQUIRED_ADDRESS_FIELDS = ("street", "city", "state", "zipCode")


class CheckoutError(Exception):
    error = "Checkout failed"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EmptyCart(CheckoutError):
    error = "Empty cart"


class InvalidAddress(CheckoutError):
    error = "Invalid address"


class ProductNotFound(CheckoutError):
    error = "Product not found"


class InsufficientStock(CheckoutError):
    error = "Insufficient stock"


def compute_totals(subtotal: float) -> Dict[str, float]:
    shipping = 0 if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING
    tax = subtotal * TAX_RATE
    subtotal, shipping, tax = round(subtotal, 2), round(shipping, 2), round(tax, 2)
    return {
        "subtotal": subtotal,
        "shipping": shipping,
        "tax": tax,
        "total": round(subtotal + shipping + tax, 2),
    }


def price_cart(session: Session, products: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Cart lines joined with live product data, plus a totals summary.

    Lines whose product has been deleted are left out.
    """
    lines = []
    for item in session.cart:
        product = find_by_id(products, item.productId)
        if not product:
            continue
        lines.append({
            **item.model_dump(),
            "product": {
                "id": product["id"],
                "name": product.get("name"),
                "price": product.get("price", 0),
                "originalPrice": product.get("originalPrice"),
                "image": (product.get("images") or [""])[0],
                "stock": product.get("stock", 0),
            },
        })
    subtotal = sum(line["product"]["price"] * line["quantity"] for line in lines)
    return {
        "items": lines,
        "summary": {"itemCount": sum(line["quantity"] for line in lines), **compute_totals(subtotal)},
    }


def validate_address(address: Optional[Address]) -> Dict[str, Any]:
    if address is None:
        raise InvalidAddress("Please provide complete shipping address")
    data = address.model_dump()
    for field in REQUIRED_ADDRESS_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise InvalidAddress("Please provide complete shipping address")
    return data


def place_order(
    store: JsonStore,
    session: Session,
    shipping_address: Optional[Address],
    payment_method: str = "card",
) -> Dict[str, Any]:
    user = session.user
    if user is None:
        raise CheckoutError("Please login to place an order")
    if session.cart.is_empty:
        raise EmptyCart("Your cart is empty")
    address = validate_address(shipping_address)

    with store.lock:
        products = store.read(PRODUCTS)
        items: List[OrderItem] = []
        subtotal = 0.0
        for line in session.cart:
            product = find_by_id(products, line.productId)
            if not product:
                raise ProductNotFound(f"Product {line.productId} no longer exists")
            if product.get("stock", 0) < line.quantity:
                raise InsufficientStock(f"Not enough stock for {product.get('name')}")
            items.append(OrderItem(
                productId=product["id"],
                name=product.get("name", ""),
                price=product.get("price", 0),
                quantity=line.quantity,
                image=(product.get("images") or [""])[0],
            ))
            subtotal += product.get("price", 0) * line.quantity
            product["stock"] = product.get("stock", 0) - line.quantity

        store.save(PRODUCTS, products)

        now = timestamp()
        order = Order(
            id=generate_id(),
            orderNumber=order_number(),
            userId=user.id,
            customerName=user.name,
            customerEmail=user.email,
            items=items,
            shippingAddress=address,
            paymentMethod=payment_method,
            status="pending",
            statusHistory=[StatusEntry(status="pending", timestamp=now, note="Order placed")],
            createdAt=now,
            updatedAt=now,
            **compute_totals(subtotal),
        ).model_dump()

        orders = store.read(ORDERS)
        orders.append(order)
        store.save(ORDERS, orders)

    session.cart.clear()
    logger.info("Order %s placed by %s, total %.2f", order["orderNumber"], user.id, order["total"])
    return order

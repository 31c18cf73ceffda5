"""
Cart-to-order conversion and the order status state machine.

An order is a priced snapshot of a cart. The cart itself comes from one of two
sources: the lines persisted for a signed-in user, or the item list a guest
sends with the checkout request. Both go through the same pricing code.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from pymongo.errors import PyMongoError

from database import create_document, delete_documents, find_and_update, get_document_by_id, get_documents, object_id
from errors import EmptyCartError, InvalidTransitionError, NotFoundError, ProductNotFoundError, ValidationError
from schemas import Order, OrderLine

logger = logging.getLogger(__name__)

FULFILMENT_FLOW = ("pending", "confirmed", "preparing", "delivered")
TERMINAL_STATUSES = ("delivered", "cancelled")


class CartSource:
    """Where the lines of an order come from."""

    user_id: Optional[str] = None

    def lines(self) -> List[Tuple[str, int]]:
        """(product_id, quantity) pairs to price."""
        raise NotImplementedError

    def initial_status(self, payment_method: str) -> Tuple[str, str]:
        """(status, payment_status) for a freshly placed order."""
        raise NotImplementedError

    def after_order(self, order_id: str):
        pass


class PersistedCart(CartSource):
    """The server-side cart of an authenticated user."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    def lines(self):
        rows = get_documents("cart", {"user_id": self.user_id}, sort=[("created_at", 1)])
        return [(row["product_id"], row["quantity"]) for row in rows]

    def initial_status(self, payment_method):
        # registered orders wait for an admin to confirm them
        return "pending", "pending"

    def after_order(self, order_id):
        try:
            removed = delete_documents("cart", {"user_id": self.user_id})
        except PyMongoError:
            # the order stands; leftover cart lines can be removed by the user
            logger.exception("Order %s placed but cart of user %s was not cleared", order_id, self.user_id)
            return
        logger.debug("Cleared %d cart lines for user %s", removed, self.user_id)


class EphemeralCart(CartSource):
    """Items sent by a guest with the checkout request."""

    def __init__(self, items: Iterable[Tuple[str, int]]):
        self.items = list(items)

    def lines(self):
        return list(self.items)

    def initial_status(self, payment_method):
        return "confirmed", "pending" if payment_method == "cash on delivery" else "completed"


def price_lines(lines: List[Tuple[str, int]]) -> Tuple[List[OrderLine], float]:
    """Resolve every product and snapshot its current name, price and image.

    Fails on the first id that does not resolve so that no partial order is built.
    """
    if not lines:
        raise EmptyCartError()
    order_lines = []
    total = 0.0
    for product_id, quantity in lines:
        product = get_document_by_id("product", product_id)
        if not product:
            raise ProductNotFoundError(product_id)
        line = OrderLine(
            product_id=product["_id"],
            name=product["name"],
            price=product["price"],
            quantity=quantity,
            image=product.get("image", ""),
        )
        order_lines.append(line)
        total += line.extension
    return order_lines, round(total, 2)


def place_order(source: CartSource, contact: dict, payment_method: str) -> dict:
    """Build, persist and return the order for a cart source.

    `contact` carries name, email, phone and address as captured at checkout.
    """
    order_lines, total = price_lines(source.lines())
    status, payment_status = source.initial_status(payment_method)
    order = Order(
        user_id=source.user_id,
        is_guest_order=source.user_id is None,
        name=contact["name"],
        email=contact["email"],
        phone=contact["phone"],
        address=contact["address"],
        payment_method=payment_method,
        items=order_lines,
        total_price=total,
        status=status,
        payment_status=payment_status,
    )
    order_id = create_document("order", order)
    logger.info("Order %s placed (%s, total %.2f)", order_id, "guest" if order.is_guest_order else "registered", total)
    source.after_order(order_id)
    return get_document_by_id("order", order_id)


def check_transition(current: str, requested: str):
    """Admin status changes: forward along the fulfilment flow, or cancel a live order."""
    if requested == current:
        return
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(current, requested)
    if requested == "cancelled":
        return
    if FULFILMENT_FLOW.index(requested) < FULFILMENT_FLOW.index(current):
        raise InvalidTransitionError(current, requested)


def update_status(order_id: str, status: Optional[str] = None, payment_status: Optional[str] = None) -> Tuple[dict, dict]:
    """Apply an admin status change; returns (previous, updated) documents."""
    if status is None and payment_status is None:
        raise ValidationError("Nothing to update", errors=[{"field": "status", "message": "status or payment_status is required"}])
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFoundError("Order not found")
    changes = {}
    if status is not None:
        check_transition(order["status"], status)
        changes["status"] = status
    if payment_status is not None:
        changes["payment_status"] = payment_status
    # guard against a concurrent change of the status we validated against
    updated = find_and_update("order", {"_id": object_id(order_id), "status": order["status"]}, changes)
    if not updated:
        raise InvalidTransitionError(order["status"], status or order["status"])
    return order, updated


def cancel_own_order(order_id: str, user_id: str) -> dict:
    """Self-service cancellation, allowed only while the order is still pending."""
    order = get_document_by_id("order", order_id)
    if not order or order.get("user_id") != user_id:
        raise NotFoundError("Order not found")
    if order["status"] != "pending":
        raise ValidationError("Order can no longer be cancelled")
    updated = find_and_update("order", {"_id": object_id(order_id), "user_id": user_id, "status": "pending"}, {"status": "cancelled"})
    if not updated:
        raise ValidationError("Order can no longer be cancelled")
    return updated

"""
Order placement and the order status workflow

Orders are created from a snapshot of the buyer's cart. Each item copies the
product as it was at checkout (name, price, images, category) so later
catalog edits or deletions never change a placed order.

Status moves follow TRANSITIONS only. The happy path is driven by admins:

    Order Placed -> Packing -> Shipped -> Out for delivery -> Delivered

with two side branches the buyer may take themselves: cancelling while the
order is still "Order Placed", and requesting a return once it is
"Delivered". A return request is then approved or rejected by an admin.

Admins can also rewrite an order's items, address and payment fields through
update_order(). That path never touches the status and always leaves a
record in the ``orderaudit`` collection.
"""
from enum import Enum
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

import config
from cart import clear_cart, get_cart
from database import create_document, get_db, get_documents, serialize_doc, to_object_id, utcnow
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from schemas import (
    Address,
    CancelOrderBody,
    Order as OrderSchema,
    OrderItem,
    OrderLine,
    OrderUpdateBody,
    PlaceOrderBody,
    ReturnRequestBody,
    StatusBody,
    StatusChange,
    VerifyPaymentBody,
)
from security import authorize, get_current_user, require

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/order", tags=["order"])


class OrderStatus(str, Enum):
    PLACED = "Order Placed"
    PACKING = "Packing"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for delivery"
    DELIVERED = "Delivered"
    RETURN_REQUESTED = "Return/Refund Requested"
    RETURN_APPROVED = "Return Approved"
    RETURN_REJECTED = "Return Rejected"
    CANCELLED = "Cancelled"
    PAYMENT_FAILED = "Payment Failed and Order Cancelled"


# Older clients and admin screens use these names for the same states
STATUS_ALIASES = {
    "processing": OrderStatus.PACKING,
    "packed": OrderStatus.PACKING,
    "in transit": OrderStatus.SHIPPED,
    "return requested": OrderStatus.RETURN_REQUESTED,
    "refund requested": OrderStatus.RETURN_REQUESTED,
}

# (from, to) -> capability the actor needs
TRANSITIONS = {
    (OrderStatus.PLACED, OrderStatus.PACKING): "orders:fulfil",
    (OrderStatus.PLACED, OrderStatus.CANCELLED): "orders:cancel",
    (OrderStatus.PLACED, OrderStatus.PAYMENT_FAILED): "orders:fulfil",
    (OrderStatus.PACKING, OrderStatus.SHIPPED): "orders:fulfil",
    (OrderStatus.SHIPPED, OrderStatus.OUT_FOR_DELIVERY): "orders:fulfil",
    (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED): "orders:fulfil",
    (OrderStatus.DELIVERED, OrderStatus.RETURN_REQUESTED): "orders:request-return",
    (OrderStatus.RETURN_REQUESTED, OrderStatus.RETURN_APPROVED): "orders:resolve-return",
    (OrderStatus.RETURN_REQUESTED, OrderStatus.RETURN_REJECTED): "orders:resolve-return",
}


def normalize_status(value: str) -> OrderStatus:
    key = (value or "").strip().lower()
    for status in OrderStatus:
        if status.value.lower() == key:
            return status
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    raise ValidationFailed(f"Unknown order status: {value}")


def next_statuses(current: OrderStatus) -> List[OrderStatus]:
    return [to for (frm, to) in TRANSITIONS if frm == current]


def compute_amount(items: List[OrderItem]) -> float:
    return round(sum(item.price * item.quantity for item in items) + config.DELIVERY_FEE, 2)


# ----------------------- Lookup -----------------------
def get_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        raise NotFound("Order not found")
    return order


def _check_owner(actor: dict, order: dict) -> None:
    if actor.get("role") != "admin" and order.get("userId") != actor["_id"]:
        raise Forbidden("Not allowed")


# ----------------------- Placement -----------------------
def cart_lines(cart: dict) -> List[OrderLine]:
    lines = []
    for product_id, sizes in cart.items():
        for size, quantity in sizes.items():
            if quantity > 0:
                lines.append(OrderLine(item_id=product_id, size=size, quantity=quantity))
    return lines


def snapshot_items(db: Database, lines: List[OrderLine]) -> List[OrderItem]:
    items = []
    for line in lines:
        product = db["product"].find_one({"_id": to_object_id(line.item_id)})
        if not product or product.get("status", "active") != "active":
            raise ValidationFailed(f"Product {line.item_id} is no longer available")
        sizes = product.get("sizes") or []
        if sizes and line.size not in sizes:
            raise ValidationFailed(f"Size {line.size} is not offered for {product['name']}")
        items.append(OrderItem(
            product_id=str(product["_id"]),
            name=product["name"],
            price=product["price"],
            image=product.get("image", []),
            category=product.get("category", ""),
            sub_category=product.get("subCategory", ""),
            size=line.size,
            quantity=line.quantity,
        ))
    return items


def place_order(db: Database, user: dict, address: Address, lines: Optional[List[OrderLine]] = None,
                method: str = "cod", client_amount: Optional[float] = None) -> dict:
    """Create an order from explicit lines or, without them, the stored cart.

    Cash orders clear the cart straight away. Card orders keep it until
    verify_payment() confirms the payment, so an abandoned payment leaves the
    cart intact.
    """
    if lines is None:
        lines = cart_lines(get_cart(db, user["_id"]))
    if not lines:
        raise ValidationFailed("Your cart is empty")

    items = snapshot_items(db, lines)
    amount = compute_amount(items)
    if client_amount is not None and abs(client_amount - amount) > 0.005:
        logger.warning("order_amount_mismatch", user_id=user["_id"], client_amount=client_amount, amount=amount)

    now = utcnow()
    order = OrderSchema(
        user_id=user["_id"],
        items=items,
        address=address,
        amount=amount,
        status=OrderStatus.PLACED.value,
        payment=False,
        payment_method=method,
        date=now,
        status_history=[StatusChange(status=OrderStatus.PLACED.value, by=user["_id"],
                                     role=user.get("role", "user"), date=now)],
    )
    order_id = create_document(db, "order", order)
    logger.info("order_placed", order_id=order_id, user_id=user["_id"], amount=amount, method=method)

    result = {"orderId": order_id, "amount": amount}
    if method == "stripe":
        result["paymentUrl"] = f"{config.PAYMENT_REDIRECT_URL}?orderId={order_id}"
    else:
        clear_cart(db, user["_id"])
    return result


def verify_payment(db: Database, user: dict, order_id: str, success: bool) -> dict:
    """Settle a card order with the outcome the payment return page reports.

    No gateway is queried: ``success`` is taken as sent by the order's owner
    (or an admin), so a paid flag set here is only as trustworthy as that
    caller.
    """
    order = get_order(db, order_id)
    _check_owner(user, order)
    if order.get("paymentMethod") != "stripe":
        raise ValidationFailed("Order is not awaiting online payment")
    if order.get("payment"):
        return order
    if normalize_status(order["status"]) != OrderStatus.PLACED:
        raise Conflict(f"Order is already {order['status']}")

    if success:
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"payment": True, "updatedAt": utcnow()}})
        clear_cart(db, order["userId"])
        logger.info("payment_confirmed", order_id=order_id)
    else:
        _apply_status(db, order, OrderStatus.PAYMENT_FAILED, user)
        logger.info("payment_failed", order_id=order_id)
    return get_order(db, order_id)


# ----------------------- Status workflow -----------------------
def check_transition(actor: dict, order: dict, target: OrderStatus) -> None:
    _check_owner(actor, order)
    current = normalize_status(order["status"])
    capability = TRANSITIONS.get((current, target))
    if capability is None:
        if actor.get("role") == "admin":
            allowed = ", ".join(s.value for s in next_statuses(current)) or "none"
            raise ValidationFailed(f"Cannot move order from '{current.value}' to '{target.value}' (allowed: {allowed})")
        raise Forbidden(f"Order can no longer be changed to '{target.value}'")
    authorize(actor, capability)


def _apply_status(db: Database, order: dict, target: OrderStatus, actor: dict, extra: Optional[dict] = None) -> None:
    now = utcnow()
    change = StatusChange(status=target.value, by=actor["_id"], role=actor.get("role", "user"), date=now)
    # Match on the status we validated against so two racing moves cannot both land
    res = db["order"].update_one(
        {"_id": order["_id"], "status": order["status"]},
        {
            "$set": {"status": target.value, "updatedAt": now, **(extra or {})},
            "$push": {"statusHistory": change.model_dump(by_alias=True)},
        },
    )
    if res.matched_count == 0:
        raise Conflict("Order was updated meanwhile, reload and try again")
    logger.info("order_status_changed", order_id=str(order["_id"]), previous=order["status"],
                status=target.value, actor_id=actor["_id"], role=actor.get("role", "user"))


def set_status(db: Database, actor: dict, order_id: str, new_status: str, reason: Optional[str] = None) -> dict:
    order = get_order(db, order_id)
    target = normalize_status(new_status)
    check_transition(actor, order, target)

    extra = {}
    if target == OrderStatus.CANCELLED:
        extra["cancellationReason"] = (reason or "").strip()
    elif target == OrderStatus.RETURN_REQUESTED:
        reason = (reason or "").strip()
        if not reason and actor.get("role") != "admin":
            raise ValidationFailed("Please tell us why you are returning this order")
        extra["returnReason"] = reason
    _apply_status(db, order, target, actor, extra)
    return get_order(db, order_id)


def cancel_order(db: Database, actor: dict, order_id: str, reason: str = "") -> dict:
    return set_status(db, actor, order_id, OrderStatus.CANCELLED.value, reason)


def request_return(db: Database, actor: dict, order_id: str, reason: str) -> dict:
    return set_status(db, actor, order_id, OrderStatus.RETURN_REQUESTED.value, reason)


# ----------------------- Listing -----------------------
def user_orders(db: Database, user: dict) -> list:
    return get_documents(db, "order", {"userId": user["_id"]}, sort=[("date", -1)])


def list_orders(db: Database, status: Optional[str] = None) -> list:
    """All orders, newest first, each with the statuses it may move to next."""
    filt = {}
    if status:
        filt["status"] = normalize_status(status).value
    orders = [serialize_doc(o) for o in get_documents(db, "order", filt, sort=[("date", -1)])]
    for o in orders:
        o["nextStatuses"] = [s.value for s in next_statuses(normalize_status(o["status"]))]
    return orders


# ----------------------- Admin override -----------------------
def update_order(db: Database, actor: dict, order_id: str, patch: OrderUpdateBody) -> dict:
    authorize(actor, "orders:override")
    order = get_order(db, order_id)
    changes = patch.model_dump(by_alias=True, exclude_none=True)
    if not changes:
        raise ValidationFailed("Nothing to update")
    if "items" in changes:
        if not patch.items:
            raise ValidationFailed("An order needs at least one item")
        if "amount" not in changes:
            changes["amount"] = compute_amount(patch.items)

    before = {field: order.get(field) for field in changes}
    now = utcnow()
    db["order"].update_one({"_id": order["_id"]}, {"$set": {**changes, "updatedAt": now}})
    create_document(db, "orderaudit", {
        "orderId": order_id,
        "actorId": actor["_id"],
        "changes": changes,
        "before": before,
        "date": now,
    })
    logger.warning("order_overridden", order_id=order_id, actor_id=actor["_id"], fields=sorted(changes))
    return get_order(db, order_id)


# ----------------------- Routes -----------------------
@router.post("/place")
def order_place(body: PlaceOrderBody, user: dict = Depends(require("shop")), db: Database = Depends(get_db)):
    result = place_order(db, user, body.address, body.items, body.method, body.amount)
    return {"success": True, "message": "Order Placed", **result}


@router.post("/verify")
def order_verify(body: VerifyPaymentBody, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = verify_payment(db, user, body.order_id, body.success)
    return {"success": True, "order": serialize_doc(order)}


@router.post("/userorders")
def order_user_orders(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "orders": [serialize_doc(o) for o in user_orders(db, user)]}


@router.post("/list")
def order_list(status: Optional[str] = None, _admin: dict = Depends(require("orders:read-all")),
               db: Database = Depends(get_db)):
    return {"success": True, "orders": list_orders(db, status)}


@router.post("/status")
def order_status(body: StatusBody, actor: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = set_status(db, actor, body.order_id, body.status, body.reason)
    return {"success": True, "message": "Status Updated", "order": serialize_doc(order)}


@router.post("/return-request")
def order_return_request(body: ReturnRequestBody, actor: dict = Depends(get_current_user),
                         db: Database = Depends(get_db)):
    if normalize_status(body.status) != OrderStatus.RETURN_REQUESTED:
        raise ValidationFailed("Only return/refund requests are accepted here")
    order = request_return(db, actor, body.order_id, body.return_reason)
    return {"success": True, "message": "Return/Refund request submitted", "order": serialize_doc(order)}


@router.post("/cancel")
def order_cancel(body: CancelOrderBody, actor: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = cancel_order(db, actor, body.order_id, body.cancellation_reason)
    return {"success": True, "message": "Order cancelled", "order": serialize_doc(order)}


@router.put("/{order_id}")
def order_update(order_id: str, body: OrderUpdateBody, admin: dict = Depends(require("orders:override")),
                 db: Database = Depends(get_db)):
    order = update_order(db, admin, order_id, body)
    return {"success": True, "message": "Order updated", "order": serialize_doc(order)}


@router.get("/{order_id}/audit")
def order_audit(order_id: str, _admin: dict = Depends(require("orders:override")), db: Database = Depends(get_db)):
    entries = get_documents(db, "orderaudit", {"orderId": order_id}, sort=[("date", 1)])
    return {"success": True, "audit": [serialize_doc(e) for e in entries]}

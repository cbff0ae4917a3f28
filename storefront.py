"""
Client-side shop state

``ShopStore`` is what a storefront view holds on to: the product catalog, the
signed-in user, and local copies of their cart and wishlist. Mutations change
the local copy first so the view can re-render straight away, then push the
change to the API. If the push fails the store re-reads the server copy and
raises ``StoreError`` so the view can show the message.

The store is constructed around an ``httpx.Client`` whose ``base_url`` points
at the API, so tests can hand it FastAPI's ``TestClient`` instead.
"""
import copy
from typing import Callable, Dict, List, Optional

import httpx
import structlog

import config

logger = structlog.get_logger(__name__)


class StoreError(Exception):
    pass


class ShopStore:
    def __init__(self, http: httpx.Client, token: Optional[str] = None,
                 delivery_fee: float = config.DELIVERY_FEE):
        self.http = http
        self.token = token
        self.delivery_fee = delivery_fee
        self.products: List[dict] = []
        self.cart_items: Dict[str, Dict[str, int]] = {}
        self.wishlist_items: Dict[str, bool] = {}
        self.user: Optional[dict] = None

    # ----------------------- Transport -----------------------
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _call(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        try:
            response = self.http.request(method, path, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning("store_request_failed", path=path, error=str(e))
            raise StoreError(str(e))
        try:
            payload = response.json()
        except ValueError:
            raise StoreError(f"Unexpected response from {path} ({response.status_code})")
        if not payload.get("success"):
            raise StoreError(payload.get("message") or f"Request to {path} failed ({response.status_code})")
        return payload

    def _push(self, path: str, body: dict, refresh: Callable[[], None]) -> None:
        if not self.token:
            return
        try:
            self._call("POST", path, body)
        except StoreError:
            logger.warning("store_sync_failed", path=path)
            try:
                refresh()
            except StoreError as e:
                logger.warning("store_reconcile_failed", path=path, error=str(e))
            raise

    # ----------------------- Loading -----------------------
    def fetch_products(self) -> None:
        self.products = self._call("GET", "/product/list")["products"]

    def fetch_cart(self) -> None:
        self.cart_items = self._call("POST", "/cart/get", {})["cartData"] or {}

    def fetch_wishlist(self) -> None:
        self.wishlist_items = self._call("POST", "/wishlist/get", {})["wishlistData"] or {}

    def fetch_profile(self) -> None:
        self.user = self._call("GET", "/user/profile")["user"]

    def load(self) -> None:
        self.fetch_products()
        if self.token:
            self.fetch_cart()
            self.fetch_wishlist()
            self.fetch_profile()

    def login(self, email: str, password: str) -> None:
        self.token = self._call("POST", "/user/login", {"email": email, "password": password})["token"]
        self.load()

    def register(self, **fields) -> None:
        self.token = self._call("POST", "/user/register", fields)["token"]
        self.load()

    def logout(self) -> None:
        self.token = None
        self.user = None
        self.cart_items = {}
        self.wishlist_items = {}

    # ----------------------- Cart -----------------------
    def add_to_cart(self, item_id: str, size: str) -> None:
        cart = copy.deepcopy(self.cart_items)
        sizes = cart.setdefault(item_id, {})
        sizes[size] = sizes.get(size, 0) + 1
        self.cart_items = cart
        self._push("/cart/add", {"itemId": item_id, "size": size}, self.fetch_cart)

    def update_quantity(self, item_id: str, size: str, quantity: int) -> None:
        cart = copy.deepcopy(self.cart_items)
        if quantity > 0:
            cart.setdefault(item_id, {})[size] = quantity
        else:
            sizes = cart.get(item_id, {})
            sizes.pop(size, None)
            if not sizes:
                cart.pop(item_id, None)
        self.cart_items = cart
        self._push("/cart/update", {"itemId": item_id, "size": size, "quantity": quantity}, self.fetch_cart)

    def find_product(self, item_id: str) -> Optional[dict]:
        return next((p for p in self.products if p["_id"] == item_id), None)

    def cart_count(self) -> int:
        return sum(q for sizes in self.cart_items.values() for q in sizes.values() if q > 0)

    def cart_amount(self) -> float:
        # Products deleted since they were carted no longer count
        total = 0.0
        for item_id, sizes in self.cart_items.items():
            product = self.find_product(item_id)
            if product is None:
                continue
            total += sum(product["price"] * q for q in sizes.values() if q > 0)
        return round(total, 2)

    def checkout_total(self) -> float:
        amount = self.cart_amount()
        return round(amount + self.delivery_fee, 2) if amount else 0.0

    # ----------------------- Wishlist -----------------------
    def add_to_wishlist(self, item_id: str) -> None:
        self.wishlist_items = {**self.wishlist_items, item_id: True}
        self._push("/wishlist/add", {"itemId": item_id}, self.fetch_wishlist)

    def remove_from_wishlist(self, item_id: str) -> None:
        self.wishlist_items = {k: v for k, v in self.wishlist_items.items() if k != item_id}
        self._push("/wishlist/remove", {"itemId": item_id}, self.fetch_wishlist)

    def clear_wishlist(self) -> None:
        self.wishlist_items = {}
        self._push("/wishlist/clear", {}, self.fetch_wishlist)

    def wishlist_count(self) -> int:
        return len(self.wishlist_items)

    # ----------------------- Orders -----------------------
    def place_order(self, address: dict, method: str = "cod") -> dict:
        if not self.token:
            raise StoreError("Login to place an order")
        items = [
            {"itemId": item_id, "size": size, "quantity": quantity}
            for item_id, sizes in self.cart_items.items() if self.find_product(item_id)
            for size, quantity in sizes.items() if quantity > 0
        ]
        if not items:
            raise StoreError("Your cart is empty")
        payload = self._call("POST", "/order/place", {
            "address": address,
            "items": items,
            "amount": self.checkout_total(),
            "method": method,
        })
        # Card payments keep the cart until the payment is verified
        if method == "cod":
            self.cart_items = {}
        logger.info("store_order_placed", order_id=payload.get("orderId"), method=method)
        return payload

    def verify_payment(self, order_id: str, success: bool) -> dict:
        order = self._call("POST", "/order/verify", {"orderId": order_id, "success": success})["order"]
        self.fetch_cart()
        return order

    def orders(self) -> List[dict]:
        return self._call("POST", "/order/userorders", {})["orders"]

    def cancel_order(self, order_id: str, reason: str = "") -> dict:
        return self._call("POST", "/order/cancel", {"orderId": order_id, "cancellationReason": reason})["order"]

    def request_return(self, order_id: str, reason: str) -> dict:
        return self._call("POST", "/order/return-request", {"orderId": order_id, "returnReason": reason})["order"]

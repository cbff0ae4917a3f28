import json

import httpx
import pytest
from bson import ObjectId

import config
from storefront import ShopStore, StoreError


@pytest.fixture
def store(client):
    return ShopStore(client)


def test_guest_cart_stays_local(store, make_product):
    tee = make_product(price=100.0)
    store.load()
    store.add_to_cart(tee, "M")
    store.add_to_cart(tee, "M")
    assert store.cart_items == {tee: {"M": 2}}
    assert store.cart_count() == 2
    assert store.cart_amount() == 200.0


def test_signed_in_cart_syncs_to_server(store, db, shopper, make_product):
    tee = make_product(price=100.0)
    store.login("jane@shop.com", "secret123")

    store.add_to_cart(tee, "M")
    store.update_quantity(tee, "L", 2)
    store.update_quantity(tee, "M", 0)

    assert store.cart_items == {tee: {"L": 2}}
    assert db["user"].find_one({"_id": ObjectId(shopper["_id"])})["cartData"] == {tee: {"L": 2}}
    assert store.user["email"] == "jane@shop.com"


def test_cart_amount_skips_deleted_products(store, db, make_product):
    tee = make_product(price=100.0)
    cap = make_product(name="Cap", price=40.0)
    store.load()
    store.add_to_cart(tee, "M")
    store.add_to_cart(cap, "S")
    store.update_quantity(cap, "M", 2)

    db["product"].delete_one({"_id": ObjectId(cap)})
    store.fetch_products()

    assert store.cart_count() == 4
    assert store.cart_amount() == 100.0
    assert store.checkout_total() == 100.0 + config.DELIVERY_FEE


def test_checkout_total_is_zero_for_empty_cart(store):
    assert store.checkout_total() == 0.0


def test_wishlist_round_trip(store, shopper):
    store.login("jane@shop.com", "secret123")
    store.add_to_wishlist("p1")
    store.add_to_wishlist("p2")
    store.remove_from_wishlist("p1")
    assert store.wishlist_items == {"p2": True}
    store.fetch_wishlist()
    assert store.wishlist_items == {"p2": True}
    store.clear_wishlist()
    store.fetch_wishlist()
    assert store.wishlist_count() == 0


def test_register_add_and_place_cod_order(store, make_product, address):
    x = make_product(name="X", price=100.0)
    store.register(firstName="Ana", lastName="Cruz", email="a@b.com", password="12345678")
    store.login("a@b.com", "12345678")
    store.add_to_cart(x, "M")

    result = store.place_order({**address, "email": "a@b.com"}, method="cod")

    assert result["success"] is True
    assert store.cart_items == {}
    store.fetch_cart()
    assert store.cart_items == {}
    [order] = store.orders()
    assert order["status"] == "Order Placed"
    assert order["payment"] is False
    assert order["paymentMethod"] == "cod"
    assert order["amount"] == 100.0 + config.DELIVERY_FEE


def test_card_order_keeps_cart_until_verified(store, shopper, make_product, address):
    tee = make_product(price=100.0)
    store.login("jane@shop.com", "secret123")
    store.add_to_cart(tee, "M")

    result = store.place_order(address, method="stripe")
    assert store.cart_items == {tee: {"M": 1}}

    order = store.verify_payment(result["orderId"], True)
    assert order["payment"] is True
    assert store.cart_items == {}


def test_cancel_and_return_through_store(store, db, shopper, make_product, address):
    tee = make_product()
    store.login("jane@shop.com", "secret123")
    store.add_to_cart(tee, "M")
    first = store.place_order(address)["orderId"]
    assert store.cancel_order(first, "Ordered twice")["status"] == "Cancelled"

    store.add_to_cart(tee, "M")
    second = store.place_order(address)["orderId"]
    with pytest.raises(StoreError):
        store.request_return(second, "Too big")
    db["order"].update_one({"_id": ObjectId(second)}, {"$set": {"status": "Delivered"}})
    assert store.request_return(second, "Too big")["returnReason"] == "Too big"


def test_place_order_needs_login_and_items(store, address):
    with pytest.raises(StoreError):
        store.place_order(address)
    store.token = "t"
    with pytest.raises(StoreError):
        store.place_order(address)


def test_failed_push_reconciles_with_server():
    server_cart = {"p1": {"M": 1}}
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.path == "/cart/add":
            return httpx.Response(500, json={"success": False, "message": "Internal server error"})
        if request.url.path == "/cart/get":
            return httpx.Response(200, json={"success": True, "cartData": server_cart})
        return httpx.Response(404, json={"success": False, "message": "Not Found"})

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://shop.test")
    store = ShopStore(http, token="t")
    store.cart_items = {"p1": {"M": 1}}

    with pytest.raises(StoreError, match="Internal server error"):
        store.add_to_cart("p1", "M")

    assert calls == ["/cart/add", "/cart/get"]
    assert store.cart_items == server_cart


def test_transport_errors_surface_as_store_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://shop.test")
    with pytest.raises(StoreError):
        ShopStore(http).fetch_products()


def test_non_json_response():
    http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(502, text="Bad Gateway")),
                        base_url="http://shop.test")
    with pytest.raises(StoreError, match="502"):
        ShopStore(http).fetch_products()


def test_guest_request_sends_no_auth_header():
    seen = {}

    def handler(request):
        seen.update(request.headers)
        return httpx.Response(200, content=json.dumps({"success": True, "products": []}))

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://shop.test")
    ShopStore(http).load()
    assert "authorization" not in seen

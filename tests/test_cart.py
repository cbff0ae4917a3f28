import pytest
from bson import ObjectId

import cart
from errors import NotFound


def test_add_same_line_twice_counts_two(db, shopper):
    cart.add_to_cart(db, shopper["_id"], "p1", "M")
    cart.add_to_cart(db, shopper["_id"], "p1", "M")
    assert cart.get_cart(db, shopper["_id"])["p1"]["M"] == 2


def test_add_keeps_sizes_apart(db, shopper):
    cart.add_to_cart(db, shopper["_id"], "p1", "M")
    cart.add_to_cart(db, shopper["_id"], "p1", "L")
    cart.add_to_cart(db, shopper["_id"], "p2", "M")
    assert cart.get_cart(db, shopper["_id"]) == {"p1": {"M": 1, "L": 1}, "p2": {"M": 1}}


def test_add_for_missing_user_raises_not_found(db):
    with pytest.raises(NotFound):
        cart.add_to_cart(db, str(ObjectId()), "p1", "M")


def test_get_cart_defaults_to_empty(db, shopper):
    db["user"].update_one({"_id": ObjectId(shopper["_id"])}, {"$unset": {"cartData": ""}})
    assert cart.get_cart(db, shopper["_id"]) == {}


def test_zero_quantity_removes_size_then_product(db, shopper):
    cart.add_to_cart(db, shopper["_id"], "p1", "M")
    cart.add_to_cart(db, shopper["_id"], "p1", "L")

    cart.update_cart_quantity(db, shopper["_id"], "p1", "M", 0)
    assert cart.get_cart(db, shopper["_id"]) == {"p1": {"L": 1}}

    cart.update_cart_quantity(db, shopper["_id"], "p1", "L", 0)
    assert cart.get_cart(db, shopper["_id"]) == {}


def test_negative_quantity_removes_line(db, shopper):
    cart.add_to_cart(db, shopper["_id"], "p1", "M")
    cart.update_cart_quantity(db, shopper["_id"], "p1", "M", -3)
    assert cart.get_cart(db, shopper["_id"]) == {}


def test_update_sets_explicit_quantity_and_creates_missing_line(db, shopper):
    cart.add_to_cart(db, shopper["_id"], "p1", "M")
    cart.update_cart_quantity(db, shopper["_id"], "p1", "M", 5)
    cart.update_cart_quantity(db, shopper["_id"], "p2", "S", 2)
    assert cart.get_cart(db, shopper["_id"]) == {"p1": {"M": 5}, "p2": {"S": 2}}


def test_zero_on_absent_line_is_a_no_op(db, shopper):
    cart.update_cart_quantity(db, shopper["_id"], "ghost", "M", 0)
    assert cart.get_cart(db, shopper["_id"]) == {}


def test_wishlist_add_then_remove_is_empty(db, shopper):
    cart.add_to_wishlist(db, shopper["_id"], "p1")
    assert cart.get_wishlist(db, shopper["_id"]) == {"p1": True}
    cart.remove_from_wishlist(db, shopper["_id"], "p1")
    assert cart.get_wishlist(db, shopper["_id"]) == {}


def test_cart_routes_round_trip(client, shopper):
    headers = shopper["headers"]
    client.post("/cart/add", json={"itemId": "p1", "size": "M"}, headers=headers)
    res = client.post("/cart/add", json={"itemId": "p1", "size": "M"}, headers=headers)
    assert res.json() == {"success": True, "message": "Added To Cart", "cartData": {"p1": {"M": 2}}}

    client.post("/cart/update", json={"itemId": "p1", "size": "M", "quantity": 0}, headers=headers)
    res = client.post("/cart/get", json={}, headers=headers)
    assert res.json() == {"success": True, "cartData": {}}


def test_cart_requires_token(client):
    res = client.post("/cart/get", json={})
    assert res.status_code == 401
    assert res.json()["success"] is False


def test_cart_rejects_unknown_fields(client, shopper):
    res = client.post("/cart/add", json={"itemId": "p1", "size": "M", "price": 1}, headers=shopper["headers"])
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_suspended_user_is_locked_out(client, db, shopper):
    db["user"].update_one({"_id": ObjectId(shopper["_id"])}, {"$set": {"suspended": True}})
    res = client.post("/cart/get", json={}, headers=shopper["headers"])
    assert res.status_code == 403
    assert res.json() == {"success": False, "message": "Account suspended"}


def test_wishlist_routes(client, shopper):
    headers = shopper["headers"]
    client.post("/wishlist/add", json={"itemId": "p1"}, headers=headers)
    client.post("/wishlist/add", json={"itemId": "p2"}, headers=headers)
    client.post("/wishlist/remove", json={"itemId": "p1"}, headers=headers)
    assert client.post("/wishlist/get", json={}, headers=headers).json()["wishlistData"] == {"p2": True}

    client.post("/wishlist/clear", json={}, headers=headers)
    assert client.post("/wishlist/get", json={}, headers=headers).json()["wishlistData"] == {}

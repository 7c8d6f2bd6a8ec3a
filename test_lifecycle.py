# test_lifecycle.py
import pytest

from qrdine.deps import Caller
from qrdine.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from qrdine.events.channels import ChannelFilter
from qrdine.models.core import ActorKind, AuditLog, Order, OrderStatus, StaffRole
from qrdine.services import lifecycle


def jprint(step, r):
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json()


@pytest.fixture
def placed_order(client, fresh_table, paneer_id):
    r = client.post("/orders/", json={
        "table_token": fresh_table["qr_token"],
        "items": [{"menu_item_id": paneer_id, "quantity": 2}],
    })
    return jprint("POST /orders/", r)["order_id"]


def _caller(boot, role):
    return Caller(user_id=f"test-{role.value}", restaurant_id=boot["restaurant_id"], role=role)


def _stored_status(db, order_id):
    db.expire_all()
    return db.get(Order, order_id).internal_status


def test_public_status_labels_are_fixed():
    expected = {
        "PLACED": "Order placed",
        "PREPARING": "Being prepared",
        "READY": "Almost ready",
        "SERVED": "Served",
    }
    # same answer whatever was asked before
    for _ in range(2):
        for status in reversed(list(expected)):
            assert lifecycle.derive_public_status(status) == expected[status]
            assert lifecycle.derive_public_status(OrderStatus(status)) == expected[status]


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        lifecycle.parse_status("COOKING")


@pytest.mark.parametrize("role,target", [
    (StaffRole.KITCHEN, OrderStatus.PLACED),
    (StaffRole.KITCHEN, OrderStatus.SERVED),
    (StaffRole.WAITER, OrderStatus.PLACED),
    (StaffRole.WAITER, OrderStatus.PREPARING),
    (StaffRole.WAITER, OrderStatus.READY),
])
def test_roles_outside_their_targets_are_rejected(db, bus, boot, placed_order, role, target):
    with pytest.raises(AuthorizationError):
        lifecycle.advance_status(db, bus, _caller(boot, role), placed_order, target)
    assert _stored_status(db, placed_order) == OrderStatus.PLACED


def test_kitchen_then_waiter_over_http(client, kitchen_headers, waiter_headers, placed_order, recorder, boot):
    customer = recorder(ChannelFilter.customer(placed_order))
    kitchen = recorder(ChannelFilter.kitchen(boot["restaurant_id"]))

    r = client.patch(f"/orders/{placed_order}/status", headers=kitchen_headers,
                     json={"internal_status": "PREPARING"})
    body = jprint("PATCH status PREPARING", r)
    assert body["internal_status"] == "PREPARING"
    assert body["public_status"] == "Being prepared"

    r = client.patch(f"/orders/{placed_order}/status", headers=waiter_headers,
                     json={"internal_status": "PREPARING"})
    assert r.status_code == 403
    assert r.json()["error"] == "authorization_error"

    assert [m.data for m in customer] == [{"order_id": placed_order, "public_status": "Being prepared"}]
    assert kitchen[-1].event == "order-updated"
    assert kitchen[-1].data["internal_status"] == "PREPARING"
    assert kitchen[-1].data["table_number"] is not None

    r = client.get(f"/orders/{placed_order}", params={"token": "nope"})
    assert r.status_code == 403


def test_full_path_to_served(client, kitchen_headers, waiter_headers, placed_order):
    for headers, status in ((kitchen_headers, "PREPARING"), (kitchen_headers, "READY"), (waiter_headers, "SERVED")):
        r = client.patch(f"/orders/{placed_order}/status", headers=headers, json={"internal_status": status})
        jprint(f"PATCH {status}", r)
    r = client.get("/orders/feed/waiter", headers=waiter_headers)
    assert placed_order not in {o["id"] for o in jprint("GET waiter feed", r)}


def test_status_change_requires_credentials(client, placed_order):
    r = client.patch(f"/orders/{placed_order}/status", json={"internal_status": "PREPARING"})
    assert r.status_code == 401
    r = client.patch(f"/orders/{placed_order}/status", headers={"Authorization": "Bearer garbage"},
                     json={"internal_status": "PREPARING"})
    assert r.status_code == 401


def test_invalid_target_is_400(client, kitchen_headers, placed_order):
    r = client.patch(f"/orders/{placed_order}/status", headers=kitchen_headers,
                     json={"internal_status": "COOKING"})
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


def test_unknown_order_is_404(db, bus, boot):
    with pytest.raises(NotFoundError):
        lifecycle.advance_status(db, bus, _caller(boot, StaffRole.KITCHEN), "missing", "PREPARING")


def test_other_restaurant_cannot_touch_order(db, bus, placed_order):
    outsider = Caller(user_id="x", restaurant_id="another-restaurant", role=StaffRole.ADMIN)
    with pytest.raises(NotFoundError):
        lifecycle.advance_status(db, bus, outsider, placed_order, "READY")


def test_expected_status_guards_against_lost_updates(db, bus, boot, placed_order):
    kitchen = _caller(boot, StaffRole.KITCHEN)
    lifecycle.advance_status(db, bus, kitchen, placed_order, "PREPARING", expected_status="PLACED")
    with pytest.raises(ConflictError):
        # someone else already moved it off PLACED
        lifecycle.advance_status(db, bus, kitchen, placed_order, "READY", expected_status="PLACED")
    assert _stored_status(db, placed_order) == OrderStatus.PREPARING


def test_backward_moves_only_for_admin(db, bus, boot, placed_order):
    kitchen = _caller(boot, StaffRole.KITCHEN)
    lifecycle.advance_status(db, bus, kitchen, placed_order, "READY")
    with pytest.raises(ConflictError):
        lifecycle.advance_status(db, bus, kitchen, placed_order, "PREPARING")

    res = lifecycle.advance_status(db, bus, _caller(boot, StaffRole.ADMIN), placed_order, "PREPARING")
    assert res["public_status"] == "Being prepared"
    assert _stored_status(db, placed_order) == OrderStatus.PREPARING


def test_kitchen_feed_lists_open_orders_oldest_first(client, kitchen_headers, waiter_headers, placed_order):
    rows = jprint("GET kitchen feed", client.get("/orders/feed/kitchen", headers=kitchen_headers))
    assert placed_order in [o["id"] for o in rows]
    created = [o["created_at"] for o in rows]
    assert created == sorted(created)

    assert client.get("/orders/feed/kitchen", headers=waiter_headers).status_code == 403
    assert client.get("/orders/feed/all", headers=kitchen_headers).status_code == 403


def test_status_change_is_audited_with_the_staff_actor(client, db, kitchen_headers, placed_order):
    jprint("PATCH status", client.patch(f"/orders/{placed_order}/status", headers=kitchen_headers,
                                        json={"internal_status": "PREPARING"}))
    db.expire_all()
    entry = db.query(AuditLog).filter(AuditLog.entity_id == placed_order, AuditLog.action == "STATUS").one()
    assert entry.actor_kind == ActorKind.STAFF
    assert entry.actor_user_id

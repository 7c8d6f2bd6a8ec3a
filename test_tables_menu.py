# test_tables_menu.py
from qrdine.models.core import OrderItem


def jprint(step, r):
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json()


def test_login(client, boot):
    r = client.post("/auth/login", json={"username": "admin", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["error"] == "authentication_error"
    body = jprint("login", client.post("/auth/login", json={"username": "waiter1", "password": "waiter123"}))
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "waiter"
    assert body["user"]["restaurant_id"] == boot["restaurant_id"]


def test_bootstrap_is_idempotent(client, boot):
    again = jprint("dev-bootstrap", client.post("/admin/dev-bootstrap"))
    assert again["restaurant_id"] == boot["restaurant_id"]
    assert again["tables"] == boot["tables"]
    assert len(again["tables"]) == 5


def test_table_admin(client, admin_headers, kitchen_headers, fresh_table):
    tid = fresh_table["id"]
    r = client.post("/tables/", headers=admin_headers, json={"table_number": fresh_table["table_number"]})
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"
    r = client.put(f"/tables/{tid}", headers=admin_headers, json={"table_number": 1})
    assert r.status_code == 409

    updated = jprint("PUT table", client.put(f"/tables/{tid}", headers=admin_headers, json={"seats": 6}))
    assert updated["seats"] == 6

    rows = jprint("GET tables", client.get("/tables/", headers=admin_headers))
    numbers = [t["table_number"] for t in rows]
    assert numbers == sorted(numbers)
    assert fresh_table["table_number"] in numbers

    assert client.get("/tables/", headers=kitchen_headers).status_code == 403
    assert client.get("/tables/").status_code == 401


def test_rotating_the_qr_token(client, admin_headers, fresh_table):
    old = fresh_table["qr_token"]
    jprint("validate", client.get(f"/tables/validate/{old}"))

    rotated = jprint("regenerate", client.post(f"/tables/{fresh_table['id']}/regenerate-qr", headers=admin_headers))
    assert rotated["qr_token"] != old
    r = client.get(f"/tables/validate/{old}")
    assert r.status_code == 404
    assert r.json()["detail"] == "Invalid or inactive table"

    link = jprint("qr", client.get(f"/tables/{fresh_table['id']}/qr", headers=admin_headers))
    assert link["qr_url"].endswith(f"/order?token={rotated['qr_token']}")


def test_validate_shows_restaurant(client, boot):
    v = jprint("validate", client.get(f"/tables/validate/{boot['tables']['1']}"))
    assert v["table_number"] == 1
    assert v["restaurant_name"] == "The Golden Plate"
    assert v["prepaid_enabled"] is True and v["postpaid_enabled"] is True


def test_public_menu(client, boot):
    menu = jprint("menu", client.get(f"/menu/{boot['restaurant_id']}"))
    names = [c["name"] for c in menu["categories"]]
    assert names.index("Starters") < names.index("Main Course") < names.index("Breads")
    starters = menu["categories"][names.index("Starters")]["items"]
    paneer = next(i for i in starters if i["name"] == "Paneer Tikka")
    assert paneer["price"] == 249.0 and paneer["is_veg"] is True
    assert client.get("/menu/no-such-restaurant").status_code == 404


def test_category_deactivation_cascades(client, admin_headers, boot, fresh_table):
    cat = jprint("POST category", client.post("/menu/admin/categories", headers=admin_headers,
                                              json={"name": "Specials", "sort_order": 9}))
    item = jprint("POST item", client.post("/menu/admin/items", headers=admin_headers, json={
        "category_id": cat["id"], "name": "Chef Thali", "price": 399, "is_veg": True}))
    assert item["price"] == 399.0

    menu = jprint("menu", client.get(f"/menu/{boot['restaurant_id']}"))
    assert "Specials" in [c["name"] for c in menu["categories"]]

    done = jprint("DELETE category", client.delete(f"/menu/admin/categories/{cat['id']}", headers=admin_headers))
    assert done["items_deactivated"] == 1

    menu = jprint("menu", client.get(f"/menu/{boot['restaurant_id']}"))
    assert "Specials" not in [c["name"] for c in menu["categories"]]
    all_items = jprint("GET admin items", client.get("/menu/admin/items", headers=admin_headers))
    assert next(i for i in all_items if i["id"] == item["id"])["active"] is False

    r = client.post("/orders/", json={"table_token": fresh_table["qr_token"],
                                      "items": [{"menu_item_id": item["id"]}]})
    assert r.status_code == 404


def test_price_change_keeps_line_snapshots(client, db, admin_headers, boot, fresh_table):
    cat = jprint("POST category", client.post("/menu/admin/categories", headers=admin_headers,
                                              json={"name": "Seasonal", "sort_order": 10}))
    item = jprint("POST item", client.post("/menu/admin/items", headers=admin_headers, json={
        "category_id": cat["id"], "name": "Mango Kulfi", "price": 99}))
    order_id = jprint("POST /orders/", client.post("/orders/", json={
        "table_token": fresh_table["qr_token"], "items": [{"menu_item_id": item["id"]}]}))["order_id"]

    jprint("PATCH item", client.patch(f"/menu/admin/items/{item['id']}", headers=admin_headers,
                                      json={"price": 129}))

    line = db.query(OrderItem).filter(OrderItem.order_id == order_id).one()
    assert float(line.price_at_order) == 99.0
    again = jprint("POST /orders/", client.post("/orders/", json={
        "table_token": fresh_table["qr_token"], "items": [{"menu_item_id": item["id"]}]}))
    assert again["total_amount"] == 129.0


def test_menu_admin_needs_admin(client, kitchen_headers):
    r = client.post("/menu/admin/categories", headers=kitchen_headers, json={"name": "Nope"})
    assert r.status_code == 403
    r = client.patch("/menu/admin/items/missing", headers={}, json={"price": 1})
    assert r.status_code == 401

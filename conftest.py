# conftest.py
import os
import tempfile

# must be set before qrdine.config is imported
_tmp = tempfile.mkdtemp(prefix="qrdine-test-")
os.environ["APP_ENV"] = "dev"
os.environ["APP_SECRET"] = "test-secret"
os.environ["DB_URL"] = f"sqlite:///{_tmp}/qrdine.db"
os.environ.pop("RAZORPAY_KEY_ID", None)
os.environ.pop("RAZORPAY_KEY_SECRET", None)

import itertools
import pytest
from fastapi.testclient import TestClient

from qrdine.main import app
from qrdine.db import SessionLocal

_table_numbers = itertools.count(100)


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="session")
def boot(client):
    # seed dev data
    r = client.post("/admin/dev-bootstrap")
    assert r.status_code == 200, f"/admin/dev-bootstrap failed: {r.text}"
    return r.json()


@pytest.fixture(scope="session")
def staff_headers(client, boot):
    out = {}
    for username, password in boot["users"].items():
        r = client.post("/auth/login", json={"username": username, "password": password})
        assert r.status_code == 200, f"/auth/login {username} failed: {r.text}"
        body = r.json()
        out[body["user"]["role"]] = {"Authorization": f"Bearer {body['access_token']}"}
    return out


@pytest.fixture(scope="session")
def admin_headers(staff_headers):
    return staff_headers["admin"]


@pytest.fixture(scope="session")
def kitchen_headers(staff_headers):
    return staff_headers["kitchen"]


@pytest.fixture(scope="session")
def waiter_headers(staff_headers):
    return staff_headers["waiter"]


@pytest.fixture(scope="session")
def paneer_id(boot):
    return boot["menu_items"]["Paneer Tikka"]


@pytest.fixture
def fresh_table(client, admin_headers):
    """A table of its own, so open-order lookups don't see other tests' orders."""
    r = client.post("/tables/", headers=admin_headers, json={"table_number": next(_table_numbers), "seats": 2})
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def bus():
    return app.state.bus


@pytest.fixture
def recorder(bus):
    """Attach what a live channel would receive, without a transport."""
    subs = []

    def _record(flt):
        seen = []
        for topic in flt.topics():
            subs.append(bus.subscribe(topic, lambda ev, f=flt: seen.append(f.project(ev)), flt.matches))
        return seen

    yield _record
    for s in subs:
        bus.unsubscribe(s)

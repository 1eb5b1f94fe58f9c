import pytest
from fastapi.testclient import TestClient

from boxoffice import config
from boxoffice.gateway import TOAST_BAD_ORDER
from boxoffice.server import app

from fakes import RecordingTransport, callback


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def bot(client):
    t = RecordingTransport()
    d = client.app.state.dispatcher
    d.transport, d.admin_chat_id, d.channel_id = t, "-100", "@sales"
    yield t
    settle(client)
    d.transport = None


def settle(client):
    client.portal.call(client.app.state.lifecycle.drain)


@pytest.fixture(scope="module")
def auth(client):
    r = client.post("/api/admin/login",
                    json={"username": "admin", "password": "supasecret"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def event(client, auth):
    def _make(seats=5, price=1500, name="Nutcracker"):
        r = client.post("/api/admin/events", headers=auth, json={
            "name": name, "price": price, "available_seats": seats,
            "city": "Moscow", "date": "2026-12-30", "time": "18:00",
        })
        assert r.status_code == 200
        return r.json()["event"]
    return _make


def _order(client, **kw):
    body = {"customer_name": "Ivan", "customer_phone": "+79001234567",
            "seats_count": 2}
    body.update(kw)
    return client.post("/api/orders", json=body)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_admin_auth(client, auth):
    r = client.post("/api/admin/login",
                    json={"username": "admin", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["success"] is False
    assert client.get("/api/admin/verify").status_code == 401
    r = client.get("/api/admin/verify",
                   headers={"Authorization": "Bearer junk"})
    assert r.status_code == 401
    r = client.get("/api/admin/verify", headers=auth)
    assert r.json()["admin"]["id"] == "admin"
    r = client.post("/api/admin/events", json={
        "name": "x", "price": 1, "available_seats": 1,
    })
    assert r.status_code == 401


def test_catalogue(client, event):
    ev = event(name="Giselle")
    assert ev["slug"].startswith("giselle-")
    slugs = [e["slug"] for e in client.get("/api/events").json()["events"]]
    assert ev["slug"] in slugs
    r = client.get(f"/api/events/{ev['slug']}")
    assert r.json()["city_name"] == "Moscow"
    assert client.get("/api/events/nope").status_code == 404


def test_create_order(client, bot, event):
    ev = event(seats=5, price=1500)
    r = _order(client, event_id=ev["id"])
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["order_code"].startswith("TK-")
    assert body["order"]["total_price"] == 3000
    assert body["order"]["status"] == "pending"

    r = client.get(f"/api/events/{ev['slug']}")
    assert r.json()["available_seats"] == 3
    assert client.get(
        f"/api/orders/{body['order_code']}"
    ).json()["status"] == "pending"

    settle(client)
    assert len(bot.to("-100")) == 1
    assert len(bot.to("@sales")) == 1


def test_order_errors(client, bot, event):
    ev = event(seats=2)
    r = _order(client, event_id=ev["id"], customer_name="I")
    assert r.status_code == 400
    assert "name" in r.json()["message"]
    assert _order(client, event_slug="no-such-show").status_code == 404
    r = _order(client, event_id=ev["id"], seats_count=3)
    assert r.status_code == 409
    assert r.json()["success"] is False
    assert client.get("/api/orders/TK-NOPE").status_code == 404
    settle(client)
    assert bot.sent == []


def test_pay_and_confirm(client, bot, event):
    ev = event()
    code = _order(client, event_id=ev["id"]).json()["order_code"]
    order_id = client.get(f"/api/orders/{code}").json()["id"]

    r = client.get(f"/api/tickets/{code}")
    assert r.json()["pending"] is True

    r = client.post(f"/api/orders/{code}/mark-paid",
                    json={"screenshot": "data:image/png;base64,aGVsbG8="})
    assert r.json() == {"success": True,
                        "status": "waiting_confirmation", "changed": True}
    settle(client)
    assert bot.photos[0][1] == b"hello"

    r = client.post("/webhooks/telegram/action",
                    json=callback(order_id, cq_id="api-cq-1"))
    assert r.status_code == 200
    assert r.text == "OK"
    assert bot.acks[-1] == ("api-cq-1", "✅ Payment confirmed!")

    ticket = client.get(f"/api/tickets/{code}").json()
    assert ticket["ticket"]["order_code"] == code
    assert ticket["ticket"]["seats_count"] == 2

    r = client.post(f"/api/orders/{code}/mark-paid")
    assert r.json()["status"] == "confirmed"
    assert r.json()["changed"] is False


def test_webhook_ignores_garbage(client, bot):
    r = client.post("/webhooks/telegram/action", content=b"not json",
                    headers={"content-type": "application/json"})
    assert r.status_code == 200
    r = client.post("/webhooks/telegram/action", json={"update_id": 5})
    assert r.status_code == 200
    assert bot.acks == []


def test_webhook_malformed_order_id(client, bot):
    r = client.post("/webhooks/telegram/action",
                    json=callback(None, data="confirm_²", cq_id="api-cq-2"))
    assert r.status_code == 200
    assert r.text == "OK"
    assert bot.acks == [("api-cq-2", TOAST_BAD_ORDER)]


def test_webhook_secret(client, bot, monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_WEBHOOK_SECRET", "hush")
    r = client.post("/webhooks/telegram/action", json=callback(1))
    assert r.status_code == 403
    r = client.post(
        "/webhooks/telegram/action", json={"update_id": 1},
        headers={"X-Telegram-Bot-Api-Secret-Token": "hush"},
    )
    assert r.status_code == 200


def test_links(client, bot, auth):
    r = client.post("/api/admin/templates", headers=auth,
                    json={"name": "Comedy night"})
    tpl_id = r.json()["id"]
    r = client.post("/api/admin/links", headers=auth, json={
        "event_template_id": tpl_id, "available_seats": 10, "city": "Kazan",
    })
    code = r.json()["link_code"]
    assert code.startswith("LNK-")

    link = client.get(f"/api/links/{code}").json()
    assert link["price"] == config.LINK_UNIT_PRICE
    assert link["name"] == "Comedy night"

    r = _order(client, link_code=code)
    assert r.json()["order_code"].startswith("LO-")
    assert r.json()["order"]["total_price"] == 2 * config.LINK_UNIT_PRICE
    assert client.get(f"/api/links/{code}").json()["available_seats"] == 8

    r = client.post(f"/api/admin/links/{code}/toggle", headers=auth)
    assert r.json()["is_active"] is False
    assert client.get(f"/api/links/{code}").status_code == 404
    assert _order(client, link_code=code).status_code == 404

    r = client.post("/api/admin/links", headers=auth,
                    json={"event_template_id": 99999})
    assert r.status_code == 404


def test_payment_settings(client, bot, auth, event):
    client.put("/api/admin/payment-settings", headers=auth, json={
        "card_number": "1111", "card_holder_name": "A", "bank_name": "B",
    })
    client.put("/api/admin/payment-settings", headers=auth, json={
        "card_number": "2222", "card_holder_name": "G", "bank_name": "H",
        "is_global": True,
    })
    ev = event()
    code = _order(client, event_id=ev["id"]).json()["order_code"]
    r = client.get(f"/api/orders/{code}/payment-settings")
    assert r.json()["card_number"] == "1111"

    tpl_id = client.post("/api/admin/templates", headers=auth,
                         json={"name": "Quiz"}).json()["id"]
    link = client.post("/api/admin/links", headers=auth,
                       json={"event_template_id": tpl_id}).json()
    code = _order(client, link_code=link["link_code"]).json()["order_code"]
    r = client.get(f"/api/orders/{code}/payment-settings")
    assert r.json()["card_number"] == "2222"


def test_admin_orders(client, auth, event):
    ev = event(name="Listing")
    code = _order(client, event_id=ev["id"]).json()["order_code"]
    r = client.get("/api/admin/orders", headers=auth)
    assert r.status_code == 200
    codes = [o["order_code"] for o in r.json()["items"]]
    assert code in codes
    assert client.get("/api/admin/orders").status_code == 401


def test_admin_orders_limit_is_clamped(client, auth):
    r = client.get("/api/admin/orders?limit=100000", headers=auth)
    assert r.json()["limit"] == 500
    r = client.get("/api/admin/orders?limit=0", headers=auth)
    assert r.json()["limit"] == 1
    assert len(r.json()["items"]) <= 1


def test_admin_event_listing(client, auth, event):
    ev = event(name="Own show")
    assert client.get("/api/admin/events").status_code == 401
    r = client.get("/api/admin/events", headers=auth)
    ids = [e["id"] for e in r.json()["events"]]
    assert ev["id"] in ids


def test_admin_update_event_keeps_seats(client, bot, auth, event):
    ev = event(seats=5, price=1000, name="Draft title")
    _order(client, event_id=ev["id"])

    r = client.put(f"/api/admin/events/{ev['id']}", headers=auth, json={
        "name": "Final title", "price": 1200, "city": "Kazan",
        "available_seats": 999,
    })
    assert r.status_code == 200
    out = r.json()["event"]
    assert out["name"] == "Final title"
    assert out["price"] == 1200
    assert out["city_name"] == "Kazan"
    assert out["available_seats"] == 3
    assert out["slug"] == ev["slug"]

    r = client.put(f"/api/admin/events/{ev['id']}", headers=auth,
                   json={"is_published": False})
    assert r.json()["event"]["is_published"] is False
    assert client.get(f"/api/events/{ev['slug']}").status_code == 404
    r = client.get("/api/admin/events", headers=auth)
    assert ev["id"] in [e["id"] for e in r.json()["events"]]

    r = client.put("/api/admin/events/99999", headers=auth,
                   json={"name": "x"})
    assert r.status_code == 404
    r = client.put(f"/api/admin/events/{ev['id']}", headers=auth,
                   json={"price": -1})
    assert r.status_code == 422


def test_admin_delete_event(client, bot, auth, event):
    unsold = event(name="Cancelled gig")
    r = client.delete(f"/api/admin/events/{unsold['id']}", headers=auth)
    assert r.json() == {"success": True}
    assert client.get(f"/api/events/{unsold['slug']}").status_code == 404
    r = client.delete(f"/api/admin/events/{unsold['id']}", headers=auth)
    assert r.status_code == 404

    sold = event(name="Sold gig")
    _order(client, event_id=sold["id"])
    r = client.delete(f"/api/admin/events/{sold['id']}", headers=auth)
    assert r.status_code == 409
    assert r.json()["success"] is False
    assert client.get(f"/api/events/{sold['slug']}").status_code == 200


def test_admin_templates(client, auth):
    tpl_id = client.post("/api/admin/templates", headers=auth,
                         json={"name": "Jazz evening"}).json()["id"]
    r = client.get("/api/admin/templates", headers=auth)
    names = {t["id"]: t["name"] for t in r.json()["templates"]}
    assert names[tpl_id] == "Jazz evening"

    r = client.put(f"/api/admin/templates/{tpl_id}", headers=auth,
                   json={"description": "Live quartet"})
    assert r.json()["template"] == {
        "id": tpl_id, "name": "Jazz evening",
        "description": "Live quartet", "is_active": True,
    }
    assert client.put("/api/admin/templates/99999", headers=auth,
                      json={"name": "x"}).status_code == 404

    r = client.post(f"/api/admin/templates/{tpl_id}/toggle", headers=auth)
    assert r.json()["is_active"] is False
    r = client.post("/api/admin/links", headers=auth,
                    json={"event_template_id": tpl_id})
    assert r.status_code == 404
    r = client.post(f"/api/admin/templates/{tpl_id}/toggle", headers=auth)
    assert r.json()["is_active"] is True
    assert client.get("/api/admin/templates").status_code == 401


def test_admin_links_list_and_delete(client, bot, auth):
    tpl_id = client.post("/api/admin/templates", headers=auth,
                         json={"name": "Magic show"}).json()["id"]
    unused = client.post("/api/admin/links", headers=auth,
                         json={"event_template_id": tpl_id}).json()
    used = client.post("/api/admin/links", headers=auth,
                       json={"event_template_id": tpl_id}).json()
    _order(client, link_code=used["link_code"])
    client.post(f"/api/admin/links/{used['link_code']}/toggle",
                headers=auth)

    r = client.get("/api/admin/links", headers=auth)
    links = {x["link_code"]: x for x in r.json()["links"]}
    assert links[unused["link_code"]]["is_active"] is True
    assert links[used["link_code"]]["is_active"] is False
    assert links[used["link_code"]]["name"] == "Magic show"
    codes = [x["link_code"] for x in r.json()["links"]]
    assert codes.index(used["link_code"]) < codes.index(unused["link_code"])

    r = client.delete(f"/api/admin/links/{used['link_code']}", headers=auth)
    assert r.status_code == 409
    r = client.delete(f"/api/admin/links/{unused['link_code']}",
                      headers=auth)
    assert r.json() == {"success": True}
    assert client.get(f"/api/links/{unused['link_code']}").status_code == 404
    r = client.get("/api/admin/links", headers=auth)
    assert unused["link_code"] not in [x["link_code"]
                                       for x in r.json()["links"]]
    assert client.delete("/api/admin/links/LNK-NOPE",
                         headers=auth).status_code == 404

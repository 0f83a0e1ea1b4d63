import uuid
from datetime import timedelta

from medledger.models.medication import Medication


def _register(client, *, email: str, full_name: str = "Owner"):
    return client.post(
        "/auth/register",
        json={
            "email": email,
            "full_name": full_name,
            "password": "password123",
            "clinic_name": f"{full_name} Clinic",
        },
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner_token(client, email: str = "owner@example.com") -> str:
    res = _register(client, email=email)
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _create_medication(client, token: str, **overrides) -> dict:
    payload = {
        "name": "Amoxicillin",
        "category": "antibiotic",
        "form": "capsule",
        "strength": "500mg",
        "unit": "capsule",
        "sku": f"AMX-{uuid.uuid4().hex[:6]}",
        "reorder_level": 20,
        "cost_price": 0.35,
        "selling_price": 0.9,
    }
    payload.update(overrides)
    res = client.post("/medications", json=payload, headers=_auth_headers(token))
    assert res.status_code == 201, res.text
    return res.json()


def _receive(client, token: str, medication_id: str, clock, *, number: str, quantity: int, days: int = 365, **extra):
    return client.post(
        f"/medications/{medication_id}/batches",
        json={
            "batch_number": number,
            "quantity": quantity,
            "expiry_date": (clock() + timedelta(days=days)).isoformat(),
            "supplier": "MedSupply Ltd",
            **extra,
        },
        headers=_auth_headers(token),
    )


def _add_member(client, token: str, *, email: str, role: str) -> dict:
    res = client.post(
        "/team/members",
        json={"email": email, "full_name": role.title(), "password": "password123", "role": role},
        headers=_auth_headers(token),
    )
    assert res.status_code == 201, res.text
    return res.json()


def _login(client, identifier: str) -> str:
    res = client.post("/auth/login", json={"identifier": identifier, "password": "password123"})
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def test_register_login_and_profile(test_context):
    client, _, _ = test_context

    token = _owner_token(client)
    assert _login(client, "owner@example.com")

    me = client.get("/auth/me", headers=_auth_headers(token))
    assert me.status_code == 200, me.text
    body = me.json()
    assert body["role"] == "owner"
    assert body["clinic_name"] == "Owner Clinic"

    duplicate = _register(client, email="OWNER@example.com")
    assert duplicate.status_code == 400
    assert duplicate.json()["error"]["code"] == "bad_request"

    bad_login = client.post("/auth/login", json={"identifier": "owner@example.com", "password": "wrong-pass"})
    assert bad_login.status_code == 401

    form_login = client.post("/auth/token", data={"username": "owner@example.com", "password": "password123"})
    assert form_login.status_code == 200, form_login.text


def test_requests_without_token_are_rejected(test_context):
    client, _, _ = test_context
    res = client.get("/medications")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "unauthorized"


def test_receive_dispense_and_overdraw_flow(test_context):
    client, _, clock = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token)
    assert medication["current_stock"] == 0
    assert medication["has_low_stock"] is True
    assert medication["batches"] == []

    received = _receive(client, token, medication["id"], clock, number="B1", quantity=100)
    assert received.status_code == 201, received.text
    body = received.json()
    assert body["current_stock"] == 100
    assert body["has_low_stock"] is False
    assert body["batches"][0]["batch_number"] == "B1"
    assert body["batches"][0]["received_at"] is not None
    assert body["batches"][0]["is_expired"] is False

    dispensed = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "dispensed", "quantity": 50, "reason": "Prescription RX-1"},
        headers=_auth_headers(token),
    )
    assert dispensed.status_code == 200, dispensed.text
    assert dispensed.json()["current_stock"] == 50

    overdraw = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "dispensed", "quantity": 60},
        headers=_auth_headers(token),
    )
    assert overdraw.status_code == 409
    error = overdraw.json()["error"]
    assert error["code"] == "conflict"
    assert error["path"] == f"/medications/{medication['id']}/adjust"
    assert error["request_id"]

    detail = client.get(f"/medications/{medication['id']}", headers=_auth_headers(token))
    assert detail.json()["current_stock"] == 50

    history = client.get(f"/medications/{medication['id']}/adjustments", headers=_auth_headers(token))
    assert history.status_code == 200, history.text
    items = history.json()["items"]
    assert [item["adjustment_type"] for item in items] == ["dispensed", "received"]
    assert [item["qty_delta"] for item in items] == [-50, 100]
    assert items[0]["allocations"] == [{"batch_number": "B1", "quantity": 50}]
    assert items[1]["notes"] == "Supplier: MedSupply Ltd"
    assert history.json()["pagination"]["total"] == 2


def test_duplicate_batch_and_invalid_inputs(test_context):
    client, _, clock = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token)
    assert _receive(client, token, medication["id"], clock, number="B1", quantity=10).status_code == 201

    duplicate = _receive(client, token, medication["id"], clock, number="B1", quantity=5)
    assert duplicate.status_code == 409
    assert "already exists" in duplicate.json()["error"]["message"]

    past = _receive(client, token, medication["id"], clock, number="OLD", quantity=5, days=-1)
    assert past.status_code == 422
    assert past.json()["error"]["details"][0]["field"] == "expiry_date"

    unknown_type = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "stolen", "quantity": 1},
        headers=_auth_headers(token),
    )
    assert unknown_type.status_code == 422
    assert unknown_type.json()["error"]["code"] == "validation_error"

    zero = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "dispensed", "quantity": 0},
        headers=_auth_headers(token),
    )
    assert zero.status_code == 422

    missing_batch = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "damaged", "quantity": 1, "batch_number": "NOPE"},
        headers=_auth_headers(token),
    )
    assert missing_batch.status_code == 404
    assert missing_batch.json()["error"]["message"] == "Batch NOPE not found"

    missing = client.post(
        "/medications/does-not-exist/adjust",
        json={"adjustment_type": "dispensed", "quantity": 1},
        headers=_auth_headers(token),
    )
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"

    detail = client.get(f"/medications/{medication['id']}", headers=_auth_headers(token)).json()
    assert detail["current_stock"] == 10
    assert [batch["batch_number"] for batch in detail["batches"]] == ["B1"]


def test_backfilled_expired_batch(test_context):
    client, _, clock = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token, reorder_level=0)

    res = _receive(client, token, medication["id"], clock, number="OLD", quantity=5, days=-2, allow_past_expiry=True)
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["has_expired"] is True
    assert body["batches"][0]["is_expired"] is True

    dispense = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "dispensed", "quantity": 1},
        headers=_auth_headers(token),
    )
    assert dispense.status_code == 409

    write_off = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "expired", "quantity": 5, "batch_number": "OLD"},
        headers=_auth_headers(token),
    )
    assert write_off.status_code == 200, write_off.text
    assert write_off.json()["current_stock"] == 0
    assert write_off.json()["has_expired"] is False


def test_alerts_follow_the_clock_and_refresh_updates_stored_flags(test_context):
    client, session_local, clock = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token, reorder_level=5)
    assert _receive(client, token, medication["id"], clock, number="B1", quantity=40, days=45).status_code == 201

    alerts = client.get("/medications/alerts", headers=_auth_headers(token)).json()
    assert alerts["summary"] == {"low_stock_count": 0, "expiring_soon_count": 0, "expired_count": 0}

    clock.advance(timedelta(days=20))

    alerts = client.get("/medications/alerts", headers=_auth_headers(token)).json()
    assert alerts["summary"]["expiring_soon_count"] == 1
    assert alerts["expiring_soon"][0]["batch_number"] == "B1"
    assert alerts["expiring_soon"][0]["days_until_expiry"] == 25

    listed = client.get("/medications", params={"expiring_soon": "true"}, headers=_auth_headers(token))
    assert listed.status_code == 200, listed.text
    assert [item["id"] for item in listed.json()["items"]] == [medication["id"]]
    assert listed.json()["summary"]["expiring_soon"] == 1

    db = session_local()
    try:
        assert db.get(Medication, medication["id"]).has_expiring_soon is False
    finally:
        db.close()

    refreshed = client.post("/medications/alerts/refresh", headers=_auth_headers(token))
    assert refreshed.status_code == 200, refreshed.text
    assert refreshed.json()["evaluated"] == 1
    assert refreshed.json()["changed"] == 1

    db = session_local()
    try:
        assert db.get(Medication, medication["id"]).has_expiring_soon is True
    finally:
        db.close()

    clock.advance(timedelta(days=30))
    alerts = client.get("/medications/alerts", headers=_auth_headers(token)).json()
    assert alerts["summary"]["expired_count"] == 1
    assert alerts["summary"]["expiring_soon_count"] == 0


def test_update_and_deactivate_medication(test_context):
    client, _, _ = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token, name="Paracetamol", category="analgesic", form="tablet")

    empty = client.patch(f"/medications/{medication['id']}", json={}, headers=_auth_headers(token))
    assert empty.status_code == 422

    cleared = client.patch(f"/medications/{medication['id']}", json={"name": None}, headers=_auth_headers(token))
    assert cleared.status_code == 422

    updated = client.patch(
        f"/medications/{medication['id']}",
        json={"reorder_level": 0, "storage_location": "Shelf B2"},
        headers=_auth_headers(token),
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["storage_location"] == "Shelf B2"
    assert updated.json()["has_low_stock"] is True

    removed = client.delete(f"/medications/{medication['id']}", headers=_auth_headers(token))
    assert removed.status_code == 200, removed.text
    body = removed.json()
    assert body["is_active"] is False
    assert body["has_low_stock"] is None
    assert body["has_expiring_soon"] is None
    assert body["has_expired"] is None

    active = client.get("/medications", headers=_auth_headers(token)).json()
    assert active["items"] == []
    inactive = client.get("/medications", params={"is_active": "false"}, headers=_auth_headers(token)).json()
    assert [item["id"] for item in inactive["items"]] == [medication["id"]]

    alerts = client.get("/medications/alerts", headers=_auth_headers(token)).json()
    assert alerts["low_stock"] == []

    restored = client.patch(f"/medications/{medication['id']}", json={"is_active": True}, headers=_auth_headers(token))
    assert restored.status_code == 200, restored.text
    assert restored.json()["has_low_stock"] is True


def test_duplicate_sku_conflicts_within_clinic_only(test_context):
    client, _, _ = test_context
    token = _owner_token(client)
    _create_medication(client, token, sku="IBU-200")

    clash = client.post(
        "/medications",
        json={
            "name": "Ibuprofen",
            "category": "analgesic",
            "form": "tablet",
            "strength": "200mg",
            "unit": "tablet",
            "sku": "ibu-200",
            "selling_price": 0.2,
        },
        headers=_auth_headers(token),
    )
    assert clash.status_code == 409

    other_token = _owner_token(client, email="other-owner@example.com")
    _create_medication(client, other_token, sku="IBU-200")


def test_medications_are_scoped_to_clinic(test_context):
    client, _, _ = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token)

    other_token = _owner_token(client, email="other-owner@example.com")
    res = client.get(f"/medications/{medication['id']}", headers=_auth_headers(other_token))
    assert res.status_code == 404


def test_list_filters_and_pagination(test_context):
    client, _, clock = test_context
    token = _owner_token(client)
    amox = _create_medication(client, token, name="Amoxicillin", reorder_level=5)
    _create_medication(client, token, name="Cetirizine", category="antihistamine", form="tablet")
    _create_medication(client, token, name="Ibuprofen", category="analgesic", form="tablet")
    assert _receive(client, token, amox["id"], clock, number="A1", quantity=50).status_code == 201

    low = client.get("/medications", params={"low_stock": "true"}, headers=_auth_headers(token)).json()
    assert [item["name"] for item in low["items"]] == ["Cetirizine", "Ibuprofen"]

    by_category = client.get("/medications", params={"category": "antihistamine"}, headers=_auth_headers(token)).json()
    assert [item["name"] for item in by_category["items"]] == ["Cetirizine"]

    search = client.get("/medications", params={"search": "amox"}, headers=_auth_headers(token)).json()
    assert [item["name"] for item in search["items"]] == ["Amoxicillin"]

    page = client.get("/medications", params={"limit": 2, "offset": 0}, headers=_auth_headers(token)).json()
    assert page["pagination"] == {"total": 3, "limit": 2, "offset": 0, "count": 2, "has_next": True}
    assert page["summary"]["total"] == 3
    assert page["summary"]["total_value"] == 17.5

    batches = client.get(f"/medications/{amox['id']}/batches", headers=_auth_headers(token))
    assert batches.status_code == 200, batches.text
    assert batches.json()["medication_name"] == "Amoxicillin"
    assert [batch["quantity"] for batch in batches.json()["batches"]] == [50]


def test_inventory_report(test_context):
    client, _, clock = test_context
    token = _owner_token(client)
    amox = _create_medication(client, token, reorder_level=20, requires_refrigeration=True)
    _create_medication(
        client,
        token,
        name="Morphine",
        category="analgesic",
        form="injection",
        is_controlled=True,
        controlled_class="II",
    )
    assert _receive(client, token, amox["id"], clock, number="A1", quantity=70).status_code == 201

    res = client.get("/reports/inventory", headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["summary"]["total_medications"] == 2
    assert body["summary"]["total_inventory_value"] == 24.5
    assert body["summary"]["total_selling_value"] == 63.0
    assert body["summary"]["low_stock_count"] == 1
    assert body["category_distribution"] == {"antibiotic": 1, "analgesic": 1}
    assert body["stock_levels"] == {"out_of_stock": 1, "low_stock": 0, "adequate": 1}
    assert body["top_by_value"][0]["medication_id"] == amox["id"]
    assert body["top_low_stock"][0]["name"] == "Morphine"
    assert body["top_low_stock"][0]["shortfall"] == 20
    assert body["compliance"] == {
        "prescription_required": 2,
        "controlled_substances": 1,
        "refrigeration_required": 1,
    }


def test_staff_can_dispense_but_not_manage(test_context):
    client, _, clock = test_context
    owner_token = _owner_token(client)
    medication = _create_medication(client, owner_token)
    assert _receive(client, owner_token, medication["id"], clock, number="B1", quantity=10).status_code == 201

    _add_member(client, owner_token, email="staff@example.com", role="staff")
    staff_token = _login(client, "staff@example.com")

    assert client.get("/auth/me", headers=_auth_headers(staff_token)).json()["role"] == "staff"

    dispensed = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "dispensed", "quantity": 2},
        headers=_auth_headers(staff_token),
    )
    assert dispensed.status_code == 200, dispensed.text
    assert dispensed.json()["last_updated_by_user_id"] != medication["created_by_user_id"]

    forbidden = [
        client.post(
            "/medications",
            json={
                "name": "Ibuprofen",
                "category": "analgesic",
                "form": "tablet",
                "strength": "200mg",
                "unit": "tablet",
                "selling_price": 0.2,
            },
            headers=_auth_headers(staff_token),
        ),
        _receive(client, staff_token, medication["id"], clock, number="B2", quantity=5),
        client.delete(f"/medications/{medication['id']}", headers=_auth_headers(staff_token)),
        client.post("/medications/alerts/refresh", headers=_auth_headers(staff_token)),
        client.get("/reports/inventory", headers=_auth_headers(staff_token)),
    ]
    for res in forbidden:
        assert res.status_code == 403, res.text
        assert res.json()["error"]["code"] == "forbidden"


def test_pharmacist_can_receive_stock(test_context):
    client, _, clock = test_context
    owner_token = _owner_token(client)
    medication = _create_medication(client, owner_token)

    _add_member(client, owner_token, email="pharm@example.com", role="pharmacist")
    pharmacist_token = _login(client, "pharm@example.com")

    res = _receive(client, pharmacist_token, medication["id"], clock, number="B1", quantity=30)
    assert res.status_code == 201, res.text
    assert res.json()["current_stock"] == 30

    patch = client.patch(
        f"/medications/{medication['id']}",
        json={"reorder_level": 5},
        headers=_auth_headers(pharmacist_token),
    )
    assert patch.status_code == 403


def test_health_endpoints(test_context):
    client, _, _ = test_context
    assert client.get("/health").json() == {"ok": True}
    root = client.get("/")
    assert root.status_code == 200
    assert root.headers["X-Request-ID"]


def test_pending_batch_is_confirmed_through_adjust(test_context):
    client, _, clock = test_context
    token = _owner_token(client)
    medication = _create_medication(client, token)

    pending = _receive(client, token, medication["id"], clock, number="B1", quantity=100, days=60, receive=False)
    assert pending.status_code == 201, pending.text
    body = pending.json()
    assert body["current_stock"] == 0
    assert body["batches"][0]["received_at"] is None
    history = client.get(f"/medications/{medication['id']}/adjustments", headers=_auth_headers(token)).json()
    assert history["items"] == []

    confirmed = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "received", "quantity": 100, "batch_number": "B1"},
        headers=_auth_headers(token),
    )
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["current_stock"] == 100
    assert confirmed.json()["batches"][0]["received_at"] is not None

    history = client.get(f"/medications/{medication['id']}/adjustments", headers=_auth_headers(token)).json()
    assert [(item["adjustment_type"], item["qty_delta"], item["batch_number"]) for item in history["items"]] == [
        ("received", 100, "B1")
    ]

    again = client.post(
        f"/medications/{medication['id']}/adjust",
        json={"adjustment_type": "received", "quantity": 100, "batch_number": "B1"},
        headers=_auth_headers(token),
    )
    assert again.status_code == 409


def test_blank_sku_clears_instead_of_colliding(test_context):
    client, _, _ = test_context
    token = _owner_token(client)
    first = _create_medication(client, token)
    second = _create_medication(client, token, name="Cetirizine", category="antihistamine", form="tablet")

    for medication in (first, second):
        res = client.patch(f"/medications/{medication['id']}", json={"sku": "  "}, headers=_auth_headers(token))
        assert res.status_code == 200, res.text
        assert res.json()["sku"] is None

    taken = client.patch(
        f"/medications/{second['id']}",
        json={"sku": "CET-10"},
        headers=_auth_headers(token),
    )
    assert taken.status_code == 200, taken.text
    clash = client.patch(f"/medications/{first['id']}", json={"sku": "cet-10"}, headers=_auth_headers(token))
    assert clash.status_code == 409
    assert "already exists" in clash.json()["error"]["message"]

    blank_name = client.patch(f"/medications/{first['id']}", json={"name": " "}, headers=_auth_headers(token))
    assert blank_name.status_code == 422


def test_team_members_are_managed_through_the_api(test_context):
    client, _, _ = test_context
    owner_token = _owner_token(client)

    admin = _add_member(client, owner_token, email="admin@example.com", role="admin")
    assert admin["role"] == "admin"
    admin_token = _login(client, "admin@example.com")
    me = client.get("/auth/me", headers=_auth_headers(admin_token)).json()
    assert me["role"] == "admin"
    assert me["clinic_name"] == "Owner Clinic"

    staff = _add_member(client, admin_token, email="staff@example.com", role="staff")
    escalate = client.post(
        "/team/members",
        json={"email": "boss@example.com", "full_name": "Boss", "password": "password123", "role": "admin"},
        headers=_auth_headers(admin_token),
    )
    assert escalate.status_code == 403

    duplicate = client.post(
        "/team/members",
        json={"email": "STAFF@example.com", "full_name": "Staff", "password": "password123", "role": "staff"},
        headers=_auth_headers(owner_token),
    )
    assert duplicate.status_code == 409

    members = client.get("/team/members", headers=_auth_headers(owner_token)).json()
    assert sorted(item["role"] for item in members["items"]) == ["admin", "owner", "staff"]

    staff_token = _login(client, "staff@example.com")
    assert client.get("/team/members", headers=_auth_headers(staff_token)).status_code == 403

    promoted = client.patch(
        f"/team/members/{staff['membership_id']}",
        json={"role": "pharmacist"},
        headers=_auth_headers(admin_token),
    )
    assert promoted.status_code == 200, promoted.text
    assert client.get("/auth/me", headers=_auth_headers(staff_token)).json()["role"] == "pharmacist"

    removed = client.patch(
        f"/team/members/{staff['membership_id']}",
        json={"is_active": False},
        headers=_auth_headers(owner_token),
    )
    assert removed.status_code == 200, removed.text
    assert client.get("/medications", headers=_auth_headers(staff_token)).status_code == 404

    owner_membership = next(item for item in members["items"] if item["role"] == "owner")
    demote_owner = client.patch(
        f"/team/members/{owner_membership['membership_id']}",
        json={"role": "staff"},
        headers=_auth_headers(admin_token),
    )
    assert demote_owner.status_code == 403

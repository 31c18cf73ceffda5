import pytest

import settings_store
from database import count_documents
from errors import ValidationError
from settings_store import coerce_value


@pytest.mark.parametrize("type_tag,raw,expected", [
    ("string", "hello", "hello"),
    ("string", 42, "42"),
    ("number", "42", 42),
    ("number", "8.5", 8.5),
    ("number", 3, 3),
    ("boolean", "false", False),
    ("boolean", "Yes", True),
    ("boolean", 0, False),
    ("boolean", True, True),
    ("object", '{"a": 1}', {"a": 1}),
    ("object", {"a": 1}, {"a": 1}),
    ("array", "cash, card ,paypal", ["cash", "card", "paypal"]),
    ("array", '["a", "b"]', ["a", "b"]),
    ("array", [1, 2], [1, 2]),
])
def test_coerce_value(type_tag, raw, expected):
    assert coerce_value(type_tag, raw) == expected


@pytest.mark.parametrize("type_tag,raw", [
    ("number", "abc"),
    ("number", True),
    ("number", "nan"),
    ("number", "-inf"),
    ("number", "1e999"),
    ("number", float("inf")),
    ("array", "[1, NaN]"),
    ("boolean", "maybe"),
    ("object", "[1, 2]"),
    ("object", "{not json"),
    ("array", {"a": 1}),
    ("string", {"a": 1}),
    ("colour", "red"),
    ("string", None),
])
def test_coerce_value_rejects(type_tag, raw):
    with pytest.raises(ValidationError):
        coerce_value(type_tag, raw)


def test_set_value_upserts_by_key():
    settings_store.set_value("delivery_fee", "5", "number", "Delivery fee", "orders")
    settings_store.set_value("delivery_fee", "7.5", "number")
    assert count_documents("setting", {"key": "delivery_fee"}) == 1
    assert settings_store.get_value("delivery_fee") == 7.5
    assert settings_store.get_value("missing", "fallback") == "fallback"


def test_initialize_defaults_is_idempotent():
    first = settings_store.initialize_defaults()
    assert first == len(settings_store.DEFAULT_SETTINGS)
    assert settings_store.initialize_defaults() == 0


def test_settings_endpoints(client, admin):
    res = client.put("/settings/tax_rate", json={"value": "9.25", "type": "number", "category": "payment"}, headers=admin.headers)
    assert res.status_code == 200
    assert res.json()["value"] == 9.25

    assert client.get("/settings/tax_rate", headers=admin.headers).json()["value"] == 9.25
    grouped = client.get("/settings", headers=admin.headers).json()
    assert [s["key"] for s in grouped["payment"]] == ["tax_rate"]

    assert client.delete("/settings/tax_rate", headers=admin.headers).status_code == 200
    assert client.get("/settings/tax_rate", headers=admin.headers).status_code == 404
    assert count_documents("activitylog", {"resource": "settings"}) == 2


def test_put_setting_with_incompatible_value(client, admin):
    res = client.put("/settings/order_timeout", json={"value": "soon", "type": "number"}, headers=admin.headers)
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "value"
    assert count_documents("setting") == 0


def test_settings_are_admin_only(client, customer):
    assert client.get("/settings", headers=customer.headers).status_code == 403
    assert client.post("/settings/initialize", headers=customer.headers).status_code == 403


def test_initialize_endpoint(client, admin):
    res = client.post("/settings/initialize", headers=admin.headers)
    assert res.json()["created"] == len(settings_store.DEFAULT_SETTINGS)
    assert client.post("/settings/initialize", headers=admin.headers).json()["created"] == 0


def test_bulk_update_is_all_or_nothing(client, admin):
    body = {"settings": [
        {"key": "currency", "value": "EUR", "type": "string"},
        {"key": "smtp_port", "value": "not a port", "type": "number"},
    ]}
    assert client.put("/settings", json=body, headers=admin.headers).status_code == 400
    assert count_documents("setting") == 0

    body["settings"][1]["value"] = "2525"
    res = client.put("/settings", json=body, headers=admin.headers)
    assert res.status_code == 200
    assert settings_store.get_value("smtp_port") == 2525


def test_export_and_restore(client, admin):
    client.post("/settings/initialize", headers=admin.headers)
    exported = client.get("/settings/export/backup", headers=admin.headers).json()["settings"]
    assert len(exported) == len(settings_store.DEFAULT_SETTINGS)
    assert "_id" not in exported[0]

    changed = [dict(s, value="Renamed") if s["key"] == "site_name" else s for s in exported]
    res = client.post("/settings/import/restore", json={"settings": changed}, headers=admin.headers)
    assert res.json()["imported"] == 0
    assert settings_store.get_value("site_name") == "Food Ordering System"

    res = client.post("/settings/import/restore", json={"settings": changed, "overwrite": True}, headers=admin.headers)
    assert res.json()["imported"] == len(exported)
    assert settings_store.get_value("site_name") == "Renamed"


def test_non_finite_number_is_rejected_and_listing_survives(client, admin):
    res = client.put("/settings/tax_rate", json={"value": "nan", "type": "number"}, headers=admin.headers)
    assert res.status_code == 400
    assert count_documents("setting", {"key": "tax_rate"}) == 0

    assert client.get("/settings", headers=admin.headers).status_code == 200
    assert client.get("/settings/export/backup", headers=admin.headers).status_code == 200

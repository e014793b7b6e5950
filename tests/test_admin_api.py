# tests/test_admin_api.py - Tests d'intégration API administration des devis

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import quote_payload, upload_blob


ADMIN_CALLS = [
    ("get", "/api/admin/quotes", None),
    ("put", "/api/admin/quotes/{id}/status", {"status": "quote_provided"}),
    ("put", "/api/admin/quotes/{id}/price", {"finalPrice": "100.00"}),
    ("put", "/api/admin/quotes/{id}/document", {"documentPath": "uploads/abc"}),
]


# =====================================
# Contrôle d'accès
# =====================================

@pytest.mark.parametrize("method, path, body", ADMIN_CALLS)
def test_admin_routes_reject_non_admin(user_client, created_quote, method, path, body):
    url = path.format(id=created_quote["id"])
    response = getattr(user_client, method)(url, **({"json": body} if body else {}))

    assert response.status_code == 403


@pytest.mark.parametrize("method, path, body", ADMIN_CALLS)
def test_admin_routes_reject_anonymous(app, created_quote, method, path, body):
    url = path.format(id=created_quote["id"])
    response = getattr(TestClient(app), method)(url, **({"json": body} if body else {}))

    assert response.status_code == 401


def test_non_admin_cannot_change_status(user_client, created_quote):
    user_client.put(f"/api/admin/quotes/{created_quote['id']}/status", json={"status": "delivered"})

    detail = user_client.get(f"/api/quotes/{created_quote['id']}").json()
    assert detail["status"] == "quote_requested"
    assert len(detail["statusHistory"]) == 1


# =====================================
# Liste globale
# =====================================

def test_list_all_quotes(admin_client, created_quote):
    response = admin_client.get("/api/admin/quotes")

    assert response.status_code == 200
    data = response.json()
    assert [q["id"] for q in data] == [created_quote["id"]]
    assert data[0]["user"]["email"] == "a@x.com"
    assert len(data[0]["files"]) == 1
    assert len(data[0]["statusHistory"]) == 1


# =====================================
# Statut
# =====================================

def test_update_status_with_notes(admin_client, created_quote):
    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/status",
        json={"status": "order_confirmed", "notes": "Commande reçue"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "order_confirmed"

    detail = admin_client.get(f"/api/quotes/{created_quote['id']}").json()
    assert detail["statusHistory"][0]["notes"] == "Commande reçue"


def test_update_status_rejects_unknown_status(admin_client, created_quote):
    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/status", json={"status": "teleported"}
    )

    assert response.status_code == 400


def test_update_status_unknown_quote(admin_client):
    response = admin_client.put("/api/admin/quotes/missing/status", json={"status": "shipped"})

    assert response.status_code == 404


def test_forward_transition_mode(admin_client, created_quote, settings):
    settings.status_transition_mode = "forward"
    url = f"/api/admin/quotes/{created_quote['id']}/status"

    assert admin_client.put(url, json={"status": "shipped"}).status_code == 200
    assert admin_client.put(url, json={"status": "quote_provided"}).status_code == 400


# =====================================
# Prix
# =====================================

def test_update_price(admin_client, created_quote):
    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/price", json={"finalPrice": "1250.50"}
    )

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["finalPrice"]) == Decimal("1250.50")
    assert data["status"] == "quote_requested"

    detail = admin_client.get(f"/api/quotes/{created_quote['id']}").json()
    assert len(detail["statusHistory"]) == 1


@pytest.mark.parametrize("price", ["0", "-1", "abc", "1.234"])
def test_update_price_invalid(admin_client, created_quote, price):
    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/price", json={"finalPrice": price}
    )

    assert response.status_code == 400


def test_update_price_unknown_quote(admin_client):
    response = admin_client.put("/api/admin/quotes/missing/price", json={"finalPrice": "10"})

    assert response.status_code == 404


# =====================================
# Document de devis
# =====================================

def test_attach_document(admin_client, user_client, created_quote):
    assert upload_blob(admin_client, "devis-pdf", b"%PDF-1.7").status_code == 200

    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/document",
        json={"documentPath": "/api/objects/upload/devis-pdf"},
    )

    assert response.status_code == 200
    assert response.json()["quoteDocumentPath"] == "uploads/devis-pdf"

    # Le client télécharge le document de son devis
    download = user_client.get("/uploads/devis-pdf")
    assert download.status_code == 200
    assert download.content == b"%PDF-1.7"


def test_attach_missing_document(admin_client, created_quote):
    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/document",
        json={"documentPath": "uploads/not-uploaded"},
    )

    assert response.status_code == 400


def test_attach_unregistered_document(admin_client, created_quote, storage):
    storage.put("devis-import", b"%PDF-1.4")

    response = admin_client.put(
        f"/api/admin/quotes/{created_quote['id']}/document",
        json={"documentPath": "uploads/devis-import"},
    )

    assert response.status_code == 200
    assert response.json()["quoteDocumentPath"] == "uploads/devis-import"


def test_document_shared_by_two_quotes(admin_client, user_client, other_client, created_quote):
    """Chaque client lit le document via son propre devis."""
    upload_blob(other_client, "xyz")
    other_quote = other_client.post(
        "/api/quotes", json=quote_payload(upload_url="/api/objects/upload/xyz")
    ).json()
    upload_blob(admin_client, "conditions", b"%PDF-1.7")

    for quote_id in (created_quote["id"], other_quote["id"]):
        response = admin_client.put(
            f"/api/admin/quotes/{quote_id}/document",
            json={"documentPath": "/uploads/conditions"},
        )
        assert response.status_code == 200

    assert user_client.get("/uploads/conditions").status_code == 200
    assert other_client.get("/uploads/conditions").status_code == 200
    # Les fichiers CAO restent privés
    assert other_client.get("/uploads/abc").status_code == 403

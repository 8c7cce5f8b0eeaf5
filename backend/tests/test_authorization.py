"""
Authorization tests for the Lilium back office API.

Verifies:
- Unauthenticated requests return 401
- Shop owners are denied every back office operation (403)
- Location admins are confined to their zones, company users to their company
- Login, logout and session revocation
"""

import pytest

from lilium.extensions import db
from lilium.models.orders import ORDER_ACCEPTED

# Same password conftest hashes for every fixture user
PASSWORD = "Password123!"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/inventory/stock/update"),
            ("POST", "/api/inventory/stock/bulk-update"),
            ("GET", "/api/inventory/low-stock"),
            ("GET", "/api/inventory/out-of-stock"),
            ("GET", "/api/inventory/history/1"),
            ("GET", "/api/inventory/report"),
            ("GET", "/api/inventory/restock-suggestions"),
            ("PATCH", "/api/orders/1/status"),
            ("GET", "/api/orders/1/history"),
            ("POST", "/api/settlements/create"),
            ("GET", "/api/settlements/summary"),
            ("POST", "/api/settlements/reconcile-cash"),
            ("POST", "/api/settlements/cash-collected"),
            ("GET", "/api/settlements/pending-cash"),
            ("GET", "/api/settlements/history"),
            ("POST", "/api/settlements/1/verify"),
            ("GET", "/api/settlements/platform-earnings"),
            ("POST", "/api/auth/logout"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/inventory/low-stock", headers=bearer("not-a-token"))
        assert resp.status_code == 401

    def test_wrong_scheme(self, client, db_session):
        resp = client.get("/api/inventory/low-stock", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401


# =============================================================================
# SHOP OWNER DENIED BACK OFFICE: 403
# =============================================================================


class TestShopOwnerDenied:
    """Shop owners hold no back office capability."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/inventory/low-stock"),
            ("GET", "/api/inventory/report"),
            ("POST", "/api/inventory/stock/update"),
            ("PATCH", "/api/orders/1/status"),
            ("GET", "/api/settlements/summary"),
            ("POST", "/api/settlements/cash-collected"),
            ("GET", "/api/settlements/platform-earnings"),
        ],
    )
    def test_forbidden(self, client, headers_for, shop_owner, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=headers_for(shop_owner))
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "FORBIDDEN"


# =============================================================================
# ZONE AND COMPANY SCOPING
# =============================================================================


class TestScoping:

    def test_location_admin_cannot_move_foreign_zone_order(self, client, headers_for, karkh_admin,
                                                           make_product, make_order):
        order = make_order([(make_product(stock=5, zones=("RUSAFA",)), 1)], zone="RUSAFA")

        resp = client.patch(
            f"/api/orders/{order.id}/status",
            json={"status": ORDER_ACCEPTED},
            headers=headers_for(karkh_admin),
        )
        assert resp.status_code == 403

    def test_location_admin_moves_own_zone_order(self, client, headers_for, karkh_admin,
                                                 make_product, make_order):
        order = make_order([(make_product(stock=5), 1)])

        resp = client.patch(
            f"/api/orders/{order.id}/status",
            json={"status": "accepted", "comment": "On it"},
            headers=headers_for(karkh_admin),
        )

        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == ORDER_ACCEPTED

        history = client.get(f"/api/orders/{order.id}/history", headers=headers_for(karkh_admin))
        assert [h["to_status"] for h in history.get_json()["history"]] == [ORDER_ACCEPTED]

    def test_illegal_order_transition(self, client, headers_for, super_admin, make_product, make_order):
        order = make_order([(make_product(stock=5), 1)])

        resp = client.patch(
            f"/api/orders/{order.id}/status",
            json={"status": "DELIVERED"},
            headers=headers_for(super_admin),
        )

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_STATE"

    def test_unknown_order(self, client, headers_for, super_admin):
        resp = client.patch("/api/orders/8080/status", json={"status": "ACCEPTED"}, headers=headers_for(super_admin))
        assert resp.status_code == 404

    def test_company_manager_cannot_manage_orders(self, client, headers_for, company_manager,
                                                  make_product, make_order):
        order = make_order([(make_product(stock=5), 1)])

        resp = client.patch(
            f"/api/orders/{order.id}/status",
            json={"status": ORDER_ACCEPTED},
            headers=headers_for(company_manager),
        )
        assert resp.status_code == 403


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestSessions:

    def test_login_with_username(self, client, super_admin):
        resp = client.post("/api/auth/login", json={"username": "super_admin", "password": PASSWORD})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["user"]["id"] == super_admin.id
        assert data["token"]
        assert data["expires_at"].endswith("Z")

    def test_login_with_email(self, client, karkh_admin):
        resp = client.post("/api/auth/login", json={"email": "karkh_admin@lilium.test", "password": PASSWORD})
        assert resp.status_code == 200

    def test_wrong_password(self, client, super_admin):
        resp = client.post("/api/auth/login", json={"username": "super_admin", "password": "nope"})
        assert resp.status_code == 401

    def test_inactive_user(self, client, make_user):
        make_user("retired", "SUPER_ADMIN", is_active=False)
        resp = client.post("/api/auth/login", json={"username": "retired", "password": PASSWORD})
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "super_admin"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, super_admin):
        token = client.post(
            "/api/auth/login", json={"username": "super_admin", "password": PASSWORD}
        ).get_json()["token"]
        headers = bearer(token)

        assert client.get("/api/inventory/report", headers=headers).status_code == 200
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/inventory/report", headers=headers).status_code == 401

    def test_deactivated_user_loses_session(self, client, headers_for, super_admin):
        headers = headers_for(super_admin)
        super_admin.is_active = False
        db.session.commit()

        resp = client.get("/api/inventory/report", headers=headers)
        assert resp.status_code == 401


# =============================================================================
# PUBLIC ENDPOINTS: NO AUTH REQUIRED
# =============================================================================


class TestPublicEndpoints:
    """System health is public."""

    def test_health(self, client, db_session):
        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"

"""
Pytest fixtures for Lilium backend tests.

Provides test database setup, catalog/order factories, users per role and
a test client.
"""

import itertools
from decimal import Decimal

import pytest
from lilium import create_app
from lilium.config import TestingConfig
from lilium.extensions import db
from lilium.models import Category, Company, Order, OrderItem, Product, User
from lilium.models.orders import (
    ORDER_PENDING,
    PAYMENT_CASH_ON_DELIVERY,
    PAYMENT_STATUS_PENDING,
)
from lilium.permissions import (
    ROLE_COMPANY_MANAGER,
    ROLE_LOCATION_ADMIN,
    ROLE_SHOP_OWNER,
    ROLE_SUPER_ADMIN,
    ROLE_VENDOR,
)
from lilium.services.auth_service import hash_password
from lilium.services.inventory_service import InventoryService, StockThresholds
from lilium.services.session_service import create_session
from lilium.time_utils import utcnow


PASSWORD = "Password123!"


class RecordingNotifier:
    """Stands in for NotificationService; remembers what it was asked to send."""

    def __init__(self, fail: bool = False, fail_back_in_stock: bool = False):
        self.fail = fail
        self.fail_back_in_stock = fail_back_in_stock
        self.alerts = []
        self.back_in_stock = []

    def send_stock_alert(self, alert):
        if self.fail:
            raise RuntimeError("push gateway down")
        self.alerts.append(alert)
        return 1

    def notify_back_in_stock(self, product_id):
        if self.fail or self.fail_back_in_stock:
            raise RuntimeError("push gateway down")
        self.back_in_stock.append(product_id)
        return 0

    @property
    def alert_types(self):
        return [a.alert_type for a in self.alerts]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='function')
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture(scope='function')
def shop_push_failing_notifier():
    return RecordingNotifier(fail_back_in_stock=True)


@pytest.fixture(scope='function')
def inventory(db_session, notifier):
    return InventoryService(StockThresholds(low=10, critical=5), notifier)


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name_en="Beverages", name_ar="مشروبات")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def company(db_session):
    """Company with an explicit 10% commission serving both zones."""
    company = Company(
        name_en="Acme Foods",
        name_ar="أكمي",
        commission_rate=Decimal("10"),
        zones=["KARKH", "RUSAFA"],
        delivery_fees={"KARKH": 2000, "RUSAFA": 3000},
    )
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_company(db_session):
    """Company without a commission rate (falls back to the default)."""
    company = Company(
        name_en="Beta Trading",
        name_ar="بيتا",
        commission_rate=None,
        zones=["RUSAFA"],
        delivery_fees={},
    )
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def make_product(db_session, category, company):
    counter = itertools.count(1)

    def _make(stock=0, *, price="1000", cost=None, company_id=None, zones=("KARKH",),
              is_active=True, name=None):
        n = next(counter)
        product = Product(
            sku=f"SKU-{n:04d}",
            name_en=name or f"Product {n}",
            name_ar=f"منتج {n}",
            price=Decimal(price),
            cost=Decimal(cost) if cost is not None else None,
            stock=stock,
            category_id=category.id,
            company_id=company_id or company.id,
            zones=list(zones),
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    def _make(username, role, *, zones=None, company_id=None, fcm_token=None, is_active=True):
        user = User(
            username=username,
            email=f"{username}@lilium.test",
            password_hash=password_hash,
            role=role,
            zones=list(zones or []),
            company_id=company_id,
            fcm_token=fcm_token,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def shop_owner(make_user):
    return make_user("shop_owner", ROLE_SHOP_OWNER)


@pytest.fixture(scope='function')
def super_admin(make_user):
    return make_user("super_admin", ROLE_SUPER_ADMIN, fcm_token="fcm-super")


@pytest.fixture(scope='function')
def karkh_admin(make_user):
    return make_user("karkh_admin", ROLE_LOCATION_ADMIN, zones=["KARKH"])


@pytest.fixture(scope='function')
def company_manager(make_user, company):
    return make_user("acme_manager", ROLE_COMPANY_MANAGER, company_id=company.id)


@pytest.fixture(scope='function')
def vendor(make_user, company):
    return make_user("acme_vendor", ROLE_VENDOR, company_id=company.id)


@pytest.fixture(scope='function')
def make_order(db_session, shop_owner, company):
    counter = itertools.count(1)

    def _make(items, *, status=ORDER_PENDING, payment_method=PAYMENT_CASH_ON_DELIVERY,
              payment_status=PAYMENT_STATUS_PENDING, zone="KARKH", delivered_at=None,
              created_at=None, company_id=None):
        """items: iterable of (product, quantity) or (product, quantity, unit_price)."""
        order = Order(
            order_number=f"ORD-{next(counter):05d}",
            user_id=shop_owner.id,
            company_id=company_id or company.id,
            zone=zone,
            status=status,
            payment_method=payment_method,
            payment_status=payment_status,
            delivered_at=delivered_at,
            created_at=created_at or utcnow(),
        )
        for entry in items:
            product, quantity = entry[0], entry[1]
            price = Decimal(entry[2]) if len(entry) > 2 else Decimal(str(product.price))
            order.items.append(OrderItem(
                product_id=product.id,
                name_en=product.name_en,
                name_ar=product.name_ar,
                price=price,
                quantity=quantity,
            ))
        db_session.add(order)
        db_session.commit()
        return order

    return _make


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Issue a real session token for a user and return the request headers."""
    def _headers(user) -> dict:
        _, token = create_session(user.id)
        return auth_headers(token)

    return _headers

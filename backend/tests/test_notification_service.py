import unittest
from decimal import Decimal

from flask import Flask

from lilium.extensions import db
from lilium.models import Category, Company, Notification, NotifyRequest, Product, User
from lilium.services.notification_service import (
    ALERT_BACK_IN_STOCK,
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    NOTIFICATION_BACK_IN_STOCK,
    NOTIFICATION_STOCK_ALERT,
    NotificationService,
    StockAlert,
)


class RecordingPushSender:
    def __init__(self):
        self.sent = []

    def send(self, tokens, title, body, data):
        self.sent.append((list(tokens), title, body, data))


class NotificationServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from lilium import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        self.company = Company(name_en="Acme", name_ar="أكمي", zones=["KARKH"], delivery_fees={})
        self.category = Category(name_en="Snacks", name_ar="وجبات")
        db.session.add_all([self.company, self.category])
        db.session.flush()

        self.product = Product(
            sku="CHIPS-1",
            name_en="Chips",
            name_ar="شيبس",
            price=Decimal("750"),
            stock=0,
            category_id=self.category.id,
            company_id=self.company.id,
            zones=["KARKH"],
        )
        db.session.add(self.product)

        def user(username, role, **kwargs):
            u = User(username=username, email=f"{username}@lilium.test", password_hash="x", role=role, **kwargs)
            db.session.add(u)
            return u

        self.super_admin = user("root", "SUPER_ADMIN", fcm_token="tok-root")
        self.location_admin = user("karkh", "LOCATION_ADMIN", zones=["KARKH"])
        self.inactive_admin = user("gone", "SUPER_ADMIN", is_active=False, fcm_token="tok-gone")
        self.vendor = user("vendor", "VENDOR", company_id=self.company.id, fcm_token="tok-vendor")
        self.shopper = user("shopper", "SHOP_OWNER", fcm_token="tok-shop")
        self.other_shopper = user("shopper2", "SHOP_OWNER")
        db.session.commit()

        self.push = RecordingPushSender()
        self.service = NotificationService(self.push)

    def _alert(self, alert_type, stock):
        return StockAlert(
            product_id=self.product.id,
            product_name="Chips",
            product_name_ar="شيبس",
            current_stock=stock,
            alert_type=alert_type,
        )

    def test_stock_alert_reaches_active_admins_only(self):
        count = self.service.send_stock_alert(self._alert(ALERT_LOW_STOCK, 4))

        self.assertEqual(count, 2)
        recipients = {n.user_id for n in db.session.query(Notification).all()}
        self.assertEqual(recipients, {self.super_admin.id, self.location_admin.id})

        tokens, title, body, data = self.push.sent[0]
        self.assertEqual(tokens, ["tok-root"])
        self.assertEqual(title, "Low Stock Alert")
        self.assertEqual(body, "Chips has only 4 units left")
        self.assertEqual(data["alert_type"], ALERT_LOW_STOCK)

    def test_alert_titles(self):
        self.assertEqual(self._alert(ALERT_OUT_OF_STOCK, 0).title_and_body()[0], "Out of Stock Alert")
        self.assertEqual(
            self._alert(ALERT_BACK_IN_STOCK, 12).title_and_body(),
            ("Back in Stock", "Chips is now back in stock (12 units)"),
        )
        with self.assertRaises(ValueError):
            self._alert("SOMETHING", 1).title_and_body()

    def test_stock_alert_rows_are_typed(self):
        self.service.send_stock_alert(self._alert(ALERT_OUT_OF_STOCK, 0))
        types = {n.type for n in db.session.query(Notification).all()}
        self.assertEqual(types, {NOTIFICATION_STOCK_ALERT})

    def test_back_in_stock_serves_pending_requests_once(self):
        db.session.add_all([
            NotifyRequest(user_id=self.shopper.id, product_id=self.product.id),
            NotifyRequest(user_id=self.other_shopper.id, product_id=self.product.id),
        ])
        db.session.commit()

        served = self.service.notify_back_in_stock(self.product.id)

        self.assertEqual(served, 2)
        notes = db.session.query(Notification).filter_by(type=NOTIFICATION_BACK_IN_STOCK).all()
        self.assertEqual({n.user_id for n in notes}, {self.shopper.id, self.other_shopper.id})
        self.assertTrue(all(r.notified and r.notified_at for r in db.session.query(NotifyRequest)))
        self.assertEqual(self.push.sent[0][0], ["tok-shop"])

        # Already served
        self.assertEqual(self.service.notify_back_in_stock(self.product.id), 0)

    def test_back_in_stock_without_requests(self):
        self.assertEqual(self.service.notify_back_in_stock(self.product.id), 0)
        self.assertEqual(self.push.sent, [])


if __name__ == "__main__":
    unittest.main()

"""
Billing models: subscription, payment methods, invoices and billing contact.

No payment provider is wired in; these rows are the system of record for
plan state and are what an external processor would be reconciled against.
"""

from datetime import datetime, timezone

from vision.models import db


PLANS = ("free", "pro", "enterprise")
PLAN_PRICES = {"free": 0, "pro": 249, "enterprise": 999}   # USD per month
PLAN_RANK = {name: rank for rank, name in enumerate(PLANS)}
BILLING_CYCLES = ("monthly", "yearly")
SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due", "cancelled")
INVOICE_STATUSES = ("draft", "open", "paid", "void")

# Yearly billing is charged as 10 months
YEARLY_MONTHS_CHARGED = 10


def _iso(value):
    return value.isoformat() if value else None


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False,
    )
    plan = db.Column(db.String(20), nullable=False, default="free")
    pending_plan = db.Column(db.String(20), comment="Downgrade target applied at period end")
    billing_cycle = db.Column(db.String(10), nullable=False, default="monthly")
    status = db.Column(db.String(20), nullable=False, default="active")
    seats = db.Column(db.Integer, default=5)
    current_period_start = db.Column(db.DateTime(timezone=True))
    current_period_end = db.Column(db.DateTime(timezone=True))
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def price(self) -> int:
        monthly = PLAN_PRICES.get(self.plan, 0)
        if self.billing_cycle == "yearly":
            return monthly * YEARLY_MONTHS_CHARGED
        return monthly

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "plan": self.plan,
            "pending_plan": self.pending_plan,
            "price": self.price,
            "billing_cycle": self.billing_cycle,
            "status": self.status,
            "seats": self.seats,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "next_billing_date": None if self.cancel_at_period_end else _iso(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
        }


class PaymentMethod(db.Model):
    __tablename__ = "payment_methods"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    brand = db.Column(db.String(30), nullable=False)
    last4 = db.Column(db.String(4), nullable=False)
    exp_month = db.Column(db.Integer, nullable=False)
    exp_year = db.Column(db.Integer, nullable=False)
    is_default = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "brand": self.brand,
            "last4": self.last4,
            "exp_month": self.exp_month,
            "exp_year": self.exp_year,
            "is_default": self.is_default,
        }


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    number = db.Column(db.String(50), unique=True, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), default="USD")
    status = db.Column(db.String(10), default="open")
    description = db.Column(db.String(300))
    pdf_url = db.Column(db.String(500))
    issued_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    paid_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            "id": self.id,
            "number": self.number,
            "amount_cents": self.amount_cents,
            "amount": self.amount_cents / 100,
            "currency": self.currency,
            "status": self.status,
            "description": self.description,
            "pdf_url": self.pdf_url,
            "issued_at": _iso(self.issued_at),
            "paid_at": _iso(self.paid_at),
        }


class BillingContact(db.Model):
    __tablename__ = "billing_contacts"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False,
    )
    name = db.Column(db.String(200))
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50))

    def to_dict(self):
        return {"name": self.name, "email": self.email, "phone": self.phone}

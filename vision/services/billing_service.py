"""
Billing Service: subscription plan state, payment methods, invoices and
the billing contact.

No payment processor is called. Upgrades take effect immediately and
issue an open invoice; downgrades are parked in ``pending_plan`` and
applied when the current period ends.
"""

import logging
import re
from datetime import timedelta

from vision.core.exceptions import NotFoundError, ValidationError
from vision.models import db
from vision.models.billing import (
    BILLING_CYCLES,
    PLAN_RANK,
    PLANS,
    BillingContact,
    Invoice,
    PaymentMethod,
    Subscription,
)
from vision.services.activity_service import log_activity
from vision.services.user_service import normalize_email
from vision.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

PERIOD_DAYS = {"monthly": 30, "yearly": 365}
CARD_BRANDS = ("visa", "mastercard", "amex", "discover", "other")
_LAST4 = re.compile(r"^\d{4}$")


# ═══════════════════════════════════════════════════════════════
# Subscription
# ═══════════════════════════════════════════════════════════════
def _start_period(sub: Subscription, start=None) -> None:
    sub.current_period_start = start or utcnow()
    sub.current_period_end = sub.current_period_start + timedelta(days=PERIOD_DAYS[sub.billing_cycle])


def _issue_invoice(sub: Subscription, description: str) -> Invoice | None:
    if sub.price <= 0:
        return None
    now = utcnow()
    seq = Invoice.query.filter_by(organization_id=sub.organization_id).count() + 1
    invoice = Invoice(
        organization_id=sub.organization_id,
        number=f"INV-{sub.organization_id:05d}-{now:%Y%m}-{seq:04d}",
        amount_cents=sub.price * 100,
        currency="USD",
        status="open",
        description=description,
        issued_at=now,
    )
    db.session.add(invoice)
    return invoice


def _roll_over(sub: Subscription) -> bool:
    """
    Advance through every elapsed period until the current one contains now.
    A parked downgrade or cancellation applies at the first boundary; each
    new paid period is invoiced.
    """
    now = utcnow()
    end = as_utc(sub.current_period_end)
    if end is None or end > now:
        return False
    if sub.cancel_at_period_end:
        sub.plan = "free"
        sub.status = "cancelled"
        sub.cancel_at_period_end = False
    elif sub.pending_plan:
        sub.plan = sub.pending_plan
    sub.pending_plan = None
    while end <= now:
        _start_period(sub, end)
        _issue_invoice(sub, f"{sub.plan.capitalize()} plan ({sub.billing_cycle})")
        end = as_utc(sub.current_period_end)
    return True


def get_subscription(org_id: int) -> Subscription:
    """The organization's subscription; a free plan is created on first access."""
    sub = Subscription.query.filter_by(organization_id=org_id).first()
    if sub is None:
        sub = Subscription(organization_id=org_id, plan="free", billing_cycle="monthly", status="active",
                           seats=5, cancel_at_period_end=False)
        _start_period(sub)
        db.session.add(sub)
        db.session.commit()
        logger.info("Free subscription created org=%s", org_id)
    elif _roll_over(sub):
        db.session.commit()
        logger.info("Subscription period rolled over org=%s plan=%s", org_id, sub.plan)
    return sub


def change_plan(org_id: int, user_id: int, plan: str) -> Subscription:
    """
    Upgrade immediately (new period, invoice) or park a downgrade until the
    period ends. Choosing the current plan clears any parked downgrade.

    Raises:
        ValidationError: Unknown plan.
    """
    if plan not in PLANS:
        raise ValidationError(f"plan must be one of {list(PLANS)}", details={"plan": "invalid"})
    sub = get_subscription(org_id)
    sub.cancel_at_period_end = False
    if sub.status == "cancelled":
        sub.status = "active"

    if PLAN_RANK[plan] > PLAN_RANK[sub.plan]:
        previous = sub.plan
        sub.plan = plan
        sub.pending_plan = None
        _start_period(sub)
        _issue_invoice(sub, f"Upgrade {previous} → {plan} ({sub.billing_cycle})")
    elif PLAN_RANK[plan] < PLAN_RANK[sub.plan]:
        sub.pending_plan = plan
    else:
        sub.pending_plan = None

    log_activity(org_id, user_id, "subscription", "updated", entity_id=sub.id,
                 description=f"Plan changed to {plan}",
                 metadata={"plan": sub.plan, "pending_plan": sub.pending_plan})
    db.session.commit()
    logger.info("Plan change org=%s plan=%s pending=%s", org_id, sub.plan, sub.pending_plan)
    return sub


def change_billing_cycle(org_id: int, user_id: int, cycle: str) -> Subscription:
    if cycle not in BILLING_CYCLES:
        raise ValidationError(f"billing_cycle must be one of {list(BILLING_CYCLES)}",
                              details={"billing_cycle": "invalid"})
    sub = get_subscription(org_id)
    if sub.billing_cycle != cycle:
        sub.billing_cycle = cycle
        _start_period(sub)
        _issue_invoice(sub, f"{sub.plan.capitalize()} plan ({cycle})")
        log_activity(org_id, user_id, "subscription", "updated", entity_id=sub.id,
                     description=f"Billing cycle changed to {cycle}")
        db.session.commit()
    return sub


def cancel_subscription(org_id: int, user_id: int) -> Subscription:
    """Cancel at period end; the plan stays usable until then."""
    sub = get_subscription(org_id)
    if sub.plan == "free":
        raise ValidationError("The free plan cannot be cancelled", details={"plan": "free"})
    sub.cancel_at_period_end = True
    log_activity(org_id, user_id, "subscription", "updated", entity_id=sub.id,
                 description="Subscription set to cancel at period end")
    db.session.commit()
    logger.info("Subscription cancel scheduled org=%s", org_id)
    return sub


def reactivate_subscription(org_id: int, user_id: int) -> Subscription:
    sub = get_subscription(org_id)
    if not sub.cancel_at_period_end:
        raise ValidationError("Subscription is not scheduled for cancellation")
    sub.cancel_at_period_end = False
    log_activity(org_id, user_id, "subscription", "updated", entity_id=sub.id,
                 description="Subscription reactivated")
    db.session.commit()
    return sub


# ═══════════════════════════════════════════════════════════════
# Payment methods
# ═══════════════════════════════════════════════════════════════
def list_payment_methods(org_id: int) -> list[PaymentMethod]:
    return (
        PaymentMethod.query.filter_by(organization_id=org_id)
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.id)
        .all()
    )


def _get_payment_method(org_id: int, pm_id: int) -> PaymentMethod:
    pm = db.session.get(PaymentMethod, pm_id)
    if not pm or pm.organization_id != org_id:
        raise NotFoundError("PaymentMethod", pm_id, org_id)
    return pm


def _clear_default(org_id: int) -> None:
    PaymentMethod.query.filter_by(organization_id=org_id, is_default=True).update({"is_default": False})


def add_payment_method(org_id: int, data: dict) -> PaymentMethod:
    """
    Store card display details. The first card, or one sent with
    ``make_default``, becomes the default.

    Raises:
        ValidationError: Bad brand, last4 or an expired card.
    """
    brand = (data.get("brand") or "").strip().lower()
    if brand not in CARD_BRANDS:
        raise ValidationError(f"brand must be one of {list(CARD_BRANDS)}", details={"brand": "invalid"})
    last4 = str(data.get("last4") or "")
    if not _LAST4.match(last4):
        raise ValidationError("last4 must be exactly 4 digits", details={"last4": "invalid"})
    try:
        exp_month = int(data.get("exp_month"))
        exp_year = int(data.get("exp_year"))
    except (TypeError, ValueError):
        raise ValidationError("exp_month and exp_year are required integers",
                              details={"exp_month": "invalid", "exp_year": "invalid"})
    if not 1 <= exp_month <= 12:
        raise ValidationError("exp_month must be between 1 and 12", details={"exp_month": "invalid"})
    today = utcnow().date()
    if (exp_year, exp_month) < (today.year, today.month):
        raise ValidationError("Card is expired", details={"exp_year": "expired"})

    is_first = PaymentMethod.query.filter_by(organization_id=org_id).count() == 0
    make_default = is_first or bool(data.get("make_default"))
    if make_default:
        _clear_default(org_id)
    pm = PaymentMethod(organization_id=org_id, brand=brand, last4=last4,
                       exp_month=exp_month, exp_year=exp_year, is_default=make_default)
    db.session.add(pm)
    db.session.commit()
    logger.info("Payment method added org=%s id=%s default=%s", org_id, pm.id, pm.is_default)
    return pm


def set_default_payment_method(org_id: int, pm_id: int) -> PaymentMethod:
    pm = _get_payment_method(org_id, pm_id)
    _clear_default(org_id)
    pm.is_default = True
    db.session.commit()
    return pm


def remove_payment_method(org_id: int, pm_id: int) -> None:
    """Delete a card; removing the default promotes the oldest remaining one."""
    pm = _get_payment_method(org_id, pm_id)
    was_default = pm.is_default
    db.session.delete(pm)
    db.session.flush()
    if was_default:
        successor = PaymentMethod.query.filter_by(organization_id=org_id).order_by(PaymentMethod.id).first()
        if successor is not None:
            successor.is_default = True
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Invoices & contact
# ═══════════════════════════════════════════════════════════════
def list_invoices(org_id: int, limit: int = 50, offset: int = 0) -> tuple[list[Invoice], int]:
    q = Invoice.query.filter_by(organization_id=org_id)
    total = q.count()
    items = q.order_by(Invoice.issued_at.desc(), Invoice.id.desc()).offset(offset).limit(limit).all()
    return items, total


def get_invoice(org_id: int, invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice or invoice.organization_id != org_id:
        raise NotFoundError("Invoice", invoice_id, org_id)
    return invoice


def get_billing_contact(org_id: int) -> BillingContact | None:
    return BillingContact.query.filter_by(organization_id=org_id).first()


def upsert_billing_contact(org_id: int, data: dict) -> BillingContact:
    email = normalize_email(data.get("email"))
    contact = get_billing_contact(org_id)
    if contact is None:
        contact = BillingContact(organization_id=org_id, email=email)
        db.session.add(contact)
    contact.email = email
    if "name" in data:
        contact.name = (data.get("name") or "").strip()[:200] or None
    if "phone" in data:
        contact.phone = (data.get("phone") or "").strip()[:50] or None
    db.session.commit()
    return contact

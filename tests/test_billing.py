"""
Billing tests.

Covers:
  - Free subscription on first access
  - Upgrade (immediate + invoice), downgrade parked until period end
  - Billing cycle change, cancel at period end, reactivate
  - Payment method validation and default handling
  - Billing contact, role gates (Admin reads, Owner changes the plan)
"""

from datetime import timedelta

import pytest

from vision.core.exceptions import NotFoundError, ValidationError
from vision.models import db
from vision.services import billing_service
from vision.utils.helpers import as_utc, utcnow


def _expire_period(sub):
    sub.current_period_end = utcnow() - timedelta(minutes=5)
    db.session.commit()


def _card(**overrides):
    data = {"brand": "Visa", "last4": "4242", "exp_month": 12, "exp_year": utcnow().year + 2}
    data.update(overrides)
    return data


class TestSubscription:
    def test_free_on_first_access(self, org):
        sub = billing_service.get_subscription(org.id)
        assert sub.plan == "free"
        assert sub.price == 0
        assert sub.status == "active"
        assert billing_service.get_subscription(org.id).id == sub.id

    def test_upgrade_is_immediate_and_invoiced(self, org, owner):
        sub = billing_service.change_plan(org.id, owner.id, "pro")
        assert sub.plan == "pro"
        assert sub.pending_plan is None
        invoices, total = billing_service.list_invoices(org.id)
        assert total == 1
        assert invoices[0].amount_cents == 24900
        assert invoices[0].status == "open"
        assert invoices[0].number.startswith(f"INV-{org.id:05d}-")

    def test_unknown_plan(self, org, owner):
        with pytest.raises(ValidationError):
            billing_service.change_plan(org.id, owner.id, "platinum")

    def test_downgrade_waits_for_period_end(self, org, owner):
        billing_service.change_plan(org.id, owner.id, "enterprise")
        sub = billing_service.change_plan(org.id, owner.id, "pro")
        assert sub.plan == "enterprise"
        assert sub.pending_plan == "pro"

        _expire_period(sub)
        sub = billing_service.get_subscription(org.id)
        assert sub.plan == "pro"
        assert sub.pending_plan is None
        assert billing_service.list_invoices(org.id)[1] == 2

    def test_same_plan_clears_pending_downgrade(self, org, owner):
        billing_service.change_plan(org.id, owner.id, "pro")
        billing_service.change_plan(org.id, owner.id, "free")
        sub = billing_service.change_plan(org.id, owner.id, "pro")
        assert sub.pending_plan is None

    def test_yearly_cycle_charges_ten_months(self, org, owner):
        billing_service.change_plan(org.id, owner.id, "pro")
        sub = billing_service.change_billing_cycle(org.id, owner.id, "yearly")
        assert sub.price == 2490
        invoices, _ = billing_service.list_invoices(org.id)
        assert invoices[0].amount_cents == 249000
        with pytest.raises(ValidationError):
            billing_service.change_billing_cycle(org.id, owner.id, "weekly")

    def test_cancel_and_reactivate(self, org, owner):
        with pytest.raises(ValidationError):
            billing_service.cancel_subscription(org.id, owner.id)
        billing_service.change_plan(org.id, owner.id, "pro")
        sub = billing_service.cancel_subscription(org.id, owner.id)
        assert sub.cancel_at_period_end is True
        assert sub.to_dict()["next_billing_date"] is None

        sub = billing_service.reactivate_subscription(org.id, owner.id)
        assert sub.cancel_at_period_end is False
        with pytest.raises(ValidationError):
            billing_service.reactivate_subscription(org.id, owner.id)

    def test_cancellation_applies_at_period_end(self, org, owner):
        billing_service.change_plan(org.id, owner.id, "pro")
        sub = billing_service.cancel_subscription(org.id, owner.id)
        _expire_period(sub)
        sub = billing_service.get_subscription(org.id)
        assert sub.plan == "free"
        assert sub.status == "cancelled"
        assert sub.cancel_at_period_end is False

    def test_catches_up_over_missed_periods(self, org, owner):
        sub = billing_service.change_plan(org.id, owner.id, "pro")
        sub.current_period_end = utcnow() - timedelta(days=95)
        db.session.commit()
        sub = billing_service.get_subscription(org.id)
        assert as_utc(sub.current_period_end) > utcnow()
        assert as_utc(sub.current_period_start) <= utcnow()
        assert billing_service.list_invoices(org.id)[1] == 5

    def test_cancellation_lapses_once_over_missed_periods(self, org, owner):
        billing_service.change_plan(org.id, owner.id, "pro")
        sub = billing_service.cancel_subscription(org.id, owner.id)
        sub.current_period_end = utcnow() - timedelta(days=95)
        db.session.commit()
        sub = billing_service.get_subscription(org.id)
        assert (sub.plan, sub.status) == ("free", "cancelled")
        assert as_utc(sub.current_period_end) > utcnow()
        assert billing_service.list_invoices(org.id)[1] == 1


class TestPaymentMethods:
    def test_first_card_is_default(self, org):
        pm = billing_service.add_payment_method(org.id, _card())
        assert pm.brand == "visa"
        assert pm.is_default is True

    def test_make_default_moves_flag(self, org):
        first = billing_service.add_payment_method(org.id, _card())
        second = billing_service.add_payment_method(org.id, _card(last4="1111", make_default=True))
        assert second.is_default is True
        db.session.refresh(first)
        assert first.is_default is False
        assert billing_service.list_payment_methods(org.id)[0].id == second.id

    @pytest.mark.parametrize("overrides", [
        {"brand": "diners-club-gold"},
        {"last4": "42"},
        {"last4": "abcd"},
        {"exp_month": 13},
        {"exp_month": "soon"},
        {"exp_year": 2001},
    ])
    def test_invalid_cards(self, org, overrides):
        with pytest.raises(ValidationError):
            billing_service.add_payment_method(org.id, _card(**overrides))

    def test_removing_default_promotes_next(self, org):
        first = billing_service.add_payment_method(org.id, _card())
        second = billing_service.add_payment_method(org.id, _card(last4="1111"))
        billing_service.remove_payment_method(org.id, first.id)
        db.session.refresh(second)
        assert second.is_default is True

    def test_other_org_card_not_found(self, org, make_user):
        from vision.services.organization_service import create_organization
        other = create_organization(make_user().id, {"name": "Other Cause"})
        pm = billing_service.add_payment_method(other.id, _card())
        with pytest.raises(NotFoundError):
            billing_service.set_default_payment_method(org.id, pm.id)


class TestContact:
    def test_upsert(self, org):
        billing_service.upsert_billing_contact(org.id, {"email": "Treasurer@HelpingHands.org", "name": "Tess"})
        contact = billing_service.upsert_billing_contact(org.id, {"email": "treasurer@helpinghands.org",
                                                                   "phone": "555-0100"})
        assert contact.to_dict() == {"name": "Tess", "email": "treasurer@helpinghands.org", "phone": "555-0100"}

    def test_invalid_email(self, org):
        with pytest.raises(ValidationError):
            billing_service.upsert_billing_contact(org.id, {"email": "not-an-email"})


class TestBillingAPI:
    def base(self, org):
        return f"/api/v1/organizations/{org.id}/billing"

    def test_subscription_and_upgrade(self, client, org, owner_headers):
        res = client.get(f"{self.base(org)}/subscription", headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["plan"] == "free"

        res = client.post(f"{self.base(org)}/subscription/plan", json={"plan": "pro"}, headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["price"] == 249

        body = client.get(f"{self.base(org)}/invoices", headers=owner_headers).get_json()
        assert body["total"] == 1
        invoice_id = body["items"][0]["id"]
        res = client.get(f"{self.base(org)}/invoices/{invoice_id}", headers=owner_headers)
        assert res.get_json()["amount"] == 249.0

    def test_plan_required(self, client, org, owner_headers):
        res = client.post(f"{self.base(org)}/subscription/plan", json={}, headers=owner_headers)
        assert res.status_code == 400

    def test_admin_reads_but_cannot_change_plan(self, client, org, make_member):
        _, _, headers = make_member("Admin")
        assert client.get(f"{self.base(org)}/subscription", headers=headers).status_code == 200
        res = client.post(f"{self.base(org)}/subscription/plan", json={"plan": "pro"}, headers=headers)
        assert res.status_code == 403

    def test_editor_cannot_read(self, client, org, make_member):
        _, _, headers = make_member("Editor")
        assert client.get(f"{self.base(org)}/subscription", headers=headers).status_code == 403

    def test_payment_methods(self, client, org, owner_headers):
        res = client.post(f"{self.base(org)}/payment-methods", json=_card(), headers=owner_headers)
        assert res.status_code == 201
        pm_id = res.get_json()["id"]
        res = client.post(f"{self.base(org)}/payment-methods", json=_card(last4="12"), headers=owner_headers)
        assert res.status_code == 422

        body = client.get(f"{self.base(org)}/payment-methods", headers=owner_headers).get_json()
        assert body["total"] == 1
        assert client.delete(f"{self.base(org)}/payment-methods/{pm_id}", headers=owner_headers).status_code == 204
        assert client.delete(f"{self.base(org)}/payment-methods/{pm_id}", headers=owner_headers).status_code == 404

    def test_contact(self, client, org, owner_headers):
        assert client.get(f"{self.base(org)}/contact", headers=owner_headers).get_json() is None
        res = client.put(f"{self.base(org)}/contact", json={"email": "books@helpinghands.org"},
                         headers=owner_headers)
        assert res.status_code == 200
        assert client.get(f"{self.base(org)}/contact", headers=owner_headers).get_json()["email"] == \
            "books@helpinghands.org"

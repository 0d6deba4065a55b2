"""
Billing Blueprint: subscription, payment methods, invoices, billing contact.

Reads are Admin+; plan changes and cancellation are Owner-only.

  GET    /organizations/<org_id>/billing/subscription
  POST   /organizations/<org_id>/billing/subscription/plan        { "plan" }
  POST   /organizations/<org_id>/billing/subscription/cycle       { "billing_cycle" }
  POST   /organizations/<org_id>/billing/subscription/cancel
  POST   /organizations/<org_id>/billing/subscription/reactivate
  GET    /organizations/<org_id>/billing/payment-methods
  POST   /organizations/<org_id>/billing/payment-methods
  POST   /organizations/<org_id>/billing/payment-methods/<id>/default
  DELETE /organizations/<org_id>/billing/payment-methods/<id>
  GET    /organizations/<org_id>/billing/invoices
  GET    /organizations/<org_id>/billing/invoices/<id>
  GET    /organizations/<org_id>/billing/contact
  PUT    /organizations/<org_id>/billing/contact
"""

from flask import Blueprint, g, jsonify

from vision.blueprints import json_body, page_args, register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import billing_service

billing_bp = Blueprint("billing_bp", __name__, url_prefix="/api/v1")
register_error_handlers(billing_bp)


# ═══════════════════════════════════════════════════════════════
# Subscription
# ═══════════════════════════════════════════════════════════════
@billing_bp.route("/organizations/<int:org_id>/billing/subscription", methods=["GET"])
@org_role_required("Admin")
def get_subscription(org_id):
    return jsonify(billing_service.get_subscription(org_id).to_dict()), 200


@billing_bp.route("/organizations/<int:org_id>/billing/subscription/plan", methods=["POST"])
@org_role_required("Owner")
def change_plan(org_id):
    data = json_body()
    if not data.get("plan"):
        return jsonify({"error": "plan is required"}), 400
    return jsonify(billing_service.change_plan(org_id, g.user_id, data["plan"]).to_dict()), 200


@billing_bp.route("/organizations/<int:org_id>/billing/subscription/cycle", methods=["POST"])
@org_role_required("Owner")
def change_cycle(org_id):
    data = json_body()
    if not data.get("billing_cycle"):
        return jsonify({"error": "billing_cycle is required"}), 400
    sub = billing_service.change_billing_cycle(org_id, g.user_id, data["billing_cycle"])
    return jsonify(sub.to_dict()), 200


@billing_bp.route("/organizations/<int:org_id>/billing/subscription/cancel", methods=["POST"])
@org_role_required("Owner")
def cancel_subscription(org_id):
    return jsonify(billing_service.cancel_subscription(org_id, g.user_id).to_dict()), 200


@billing_bp.route("/organizations/<int:org_id>/billing/subscription/reactivate", methods=["POST"])
@org_role_required("Owner")
def reactivate_subscription(org_id):
    return jsonify(billing_service.reactivate_subscription(org_id, g.user_id).to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Payment methods
# ═══════════════════════════════════════════════════════════════
@billing_bp.route("/organizations/<int:org_id>/billing/payment-methods", methods=["GET"])
@org_role_required("Admin")
def list_payment_methods(org_id):
    methods = billing_service.list_payment_methods(org_id)
    return jsonify({"items": [m.to_dict() for m in methods], "total": len(methods)}), 200


@billing_bp.route("/organizations/<int:org_id>/billing/payment-methods", methods=["POST"])
@org_role_required("Admin")
def add_payment_method(org_id):
    """Body: { "brand", "last4", "exp_month", "exp_year", "make_default"? }"""
    data = json_body()
    return jsonify(billing_service.add_payment_method(org_id, data).to_dict()), 201


@billing_bp.route(
    "/organizations/<int:org_id>/billing/payment-methods/<int:pm_id>/default", methods=["POST"],
)
@org_role_required("Admin")
def set_default_payment_method(org_id, pm_id):
    return jsonify(billing_service.set_default_payment_method(org_id, pm_id).to_dict()), 200


@billing_bp.route("/organizations/<int:org_id>/billing/payment-methods/<int:pm_id>", methods=["DELETE"])
@org_role_required("Admin")
def remove_payment_method(org_id, pm_id):
    billing_service.remove_payment_method(org_id, pm_id)
    return "", 204


# ═══════════════════════════════════════════════════════════════
# Invoices & contact
# ═══════════════════════════════════════════════════════════════
@billing_bp.route("/organizations/<int:org_id>/billing/invoices", methods=["GET"])
@org_role_required("Admin")
def list_invoices(org_id):
    limit, offset = page_args()
    items, total = billing_service.list_invoices(org_id, limit=limit, offset=offset)
    return jsonify({"items": [i.to_dict() for i in items], "total": total}), 200


@billing_bp.route("/organizations/<int:org_id>/billing/invoices/<int:invoice_id>", methods=["GET"])
@org_role_required("Admin")
def get_invoice(org_id, invoice_id):
    return jsonify(billing_service.get_invoice(org_id, invoice_id).to_dict()), 200


@billing_bp.route("/organizations/<int:org_id>/billing/contact", methods=["GET"])
@org_role_required("Admin")
def get_contact(org_id):
    contact = billing_service.get_billing_contact(org_id)
    return jsonify(contact.to_dict() if contact else None), 200


@billing_bp.route("/organizations/<int:org_id>/billing/contact", methods=["PUT"])
@org_role_required("Admin")
def put_contact(org_id):
    """Body: { "email", "name"?, "phone"? }"""
    data = json_body()
    return jsonify(billing_service.upsert_billing_contact(org_id, data).to_dict()), 200

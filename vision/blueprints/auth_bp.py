"""
Auth Blueprint: registration, JWT login and the caller's own profile.

  POST  /api/v1/auth/register            create account → user (201)
  POST  /api/v1/auth/login               email + password → JWT pair
  POST  /api/v1/auth/refresh             refresh token → new JWT pair
  GET   /api/v1/auth/me                  profile + organizations
  PATCH /api/v1/auth/me                  update full_name / avatar_url
  POST  /api/v1/auth/me/password         change password
  GET   /api/v1/auth/me/preferences      UI preferences
  PATCH /api/v1/auth/me/preferences
"""

from flask import Blueprint, g, jsonify

from vision.blueprints import json_body, register_error_handlers
from vision.middleware.permission_required import login_required
from vision.services import user_service
from vision.services.organization_service import list_user_organizations

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# Registration & tokens
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """Body: { "email", "password", "full_name"? }"""
    data = json_body()
    if not data.get("email") or not data.get("password"):
        return jsonify({"error": "Email and password are required"}), 400
    user = user_service.register(data["email"], data["password"], data.get("full_name"))
    return jsonify(user.to_dict()), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """Body: { "email", "password" } → access/refresh tokens + user."""
    data = json_body()
    if not data.get("email") or not data.get("password"):
        return jsonify({"error": "Email and password are required"}), 400
    return jsonify(user_service.login(data["email"], data["password"])), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    data = json_body()
    if not data.get("refresh_token"):
        return jsonify({"error": "refresh_token is required"}), 400
    return jsonify(user_service.refresh(data["refresh_token"])), 200


# ═══════════════════════════════════════════════════════════════
# Current user
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    user = user_service.get_user(g.user_id)
    data = user.to_dict()
    data["organizations"] = list_user_organizations(user.id)
    return jsonify(data), 200


@auth_bp.route("/me", methods=["PATCH"])
@login_required
def update_me():
    data = json_body()
    return jsonify(user_service.update_profile(g.user_id, data).to_dict()), 200


@auth_bp.route("/me/password", methods=["POST"])
@login_required
def change_password():
    """Body: { "current_password", "new_password" }"""
    data = json_body()
    if not data.get("current_password") or not data.get("new_password"):
        return jsonify({"error": "current_password and new_password are required"}), 400
    user_service.change_password(g.user_id, data["current_password"], data["new_password"])
    return jsonify({"message": "Password changed"}), 200


@auth_bp.route("/me/preferences", methods=["GET"])
@login_required
def get_preferences():
    return jsonify(user_service.get_preferences(g.user_id).to_dict()), 200


@auth_bp.route("/me/preferences", methods=["PATCH"])
@login_required
def update_preferences():
    data = json_body()
    return jsonify(user_service.update_preferences(g.user_id, data).to_dict()), 200

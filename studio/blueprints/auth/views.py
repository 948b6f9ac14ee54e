"""Account routes backed by the Identity Toolkit."""
import logging

from flask import request, session

from studio.blueprints.auth import auth_bp
from studio.errors import ValidationError
from studio.services import auth_service, history_service, usage_service
from studio.services.auth_service import current_account_id, login_required

logger = logging.getLogger(__name__)


def _credentials():
    data = request.get_json(silent=True) or {}
    email = auth_service.sanitize_email(data.get("email"))
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")
    return email, password


@auth_bp.route("/register", methods=["POST"])
def register():
    email, password = _credentials()
    account = auth_service.register(email, password)
    auth_service.start_session(account)
    usage_service.get_quota(account["localId"])
    logger.info("Registered account %s", account["localId"])
    return {"accountId": account["localId"], "email": account.get("email", email)}, 201


@auth_bp.route("/login", methods=["POST"])
def login():
    email, password = _credentials()
    account = auth_service.sign_in(email, password)
    auth_service.start_session(account)
    return {"accountId": account["localId"], "email": account.get("email", email)}


@auth_bp.route("/logout", methods=["POST"])
def logout():
    auth_service.end_session()
    return "", 204


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    email = auth_service.sanitize_email((request.get_json(silent=True) or {}).get("email"))
    if not email:
        raise ValidationError("Email is required")
    auth_service.send_password_reset(email)
    return {"sent": True}


@auth_bp.route("/me")
@login_required
def me():
    account_id = current_account_id()
    return {
        "accountId": account_id,
        "email": session.get("email", ""),
        "usage": usage_service.get_quota(account_id).to_dict(),
    }


@auth_bp.route("/account", methods=["DELETE"])
@login_required
def delete_account():
    """Re-authenticate with the password, then delete account and data."""
    password = (request.get_json(silent=True) or {}).get("password") or ""
    if not password:
        raise ValidationError("Password is required to delete the account")
    account_id = current_account_id()
    account = auth_service.sign_in(session.get("email", ""), password)
    auth_service.delete_account(account["idToken"])
    history_service.delete_account_data(account_id)
    auth_service.end_session()
    logger.info("Deleted account %s", account_id)
    return "", 204

"""Email/password accounts via the Identity Toolkit REST API."""
import functools
import logging

import httpx
from flask import current_app, session

from studio.errors import AuthenticationError

logger = logging.getLogger(__name__)

SESSION_KEY = "account_id"

# Provider error messages -> client error codes
PROVIDER_CODES = {
    "INVALID_EMAIL": "auth/invalid-email",
    "MISSING_EMAIL": "auth/invalid-email",
    "USER_DISABLED": "auth/user-disabled",
    "EMAIL_NOT_FOUND": "auth/user-not-found",
    "INVALID_PASSWORD": "auth/wrong-password",
    "MISSING_PASSWORD": "auth/wrong-password",
    "INVALID_LOGIN_CREDENTIALS": "auth/invalid-credential",
    "INVALID_ID_TOKEN": "auth/invalid-credential",
    "EMAIL_EXISTS": "auth/email-already-in-use",
    "WEAK_PASSWORD": "auth/weak-password",
}


def sanitize_email(email):
    return (email or "").strip().lower()


def map_error_code(provider_message):
    # Messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
    head = (provider_message or "").split(":", 1)[0].strip()
    return PROVIDER_CODES.get(head, "auth/generic")


def _url(method):
    base = current_app.config["IDENTITY_TOOLKIT_URL"].rstrip("/")
    return f"{base}/accounts:{method}"


def _post(method, payload):
    """POST to the Identity Toolkit and map failures to AuthenticationError."""
    api_key = current_app.config["FIREBASE_API_KEY"]
    if not api_key:
        raise AuthenticationError("auth/generic", "FIREBASE_API_KEY is not configured")
    try:
        resp = httpx.post(_url(method), params={"key": api_key}, json=payload, timeout=15.0)
    except httpx.TransportError as e:
        logger.error("Identity Toolkit unreachable: %s", e)
        raise AuthenticationError("auth/generic", f"Auth provider unreachable: {e}")

    try:
        data = resp.json()
    except ValueError:
        data = {}
    if resp.status_code >= 400:
        provider_message = ((data or {}).get("error") or {}).get("message", "")
        code = map_error_code(provider_message)
        logger.info("Identity Toolkit %s rejected: %s", method, provider_message)
        raise AuthenticationError(code, f"{code} ({provider_message or resp.status_code})")
    return data


def sign_in(email, password):
    """Returns the provider payload: localId, email, idToken, refreshToken."""
    return _post(
        "signInWithPassword",
        {"email": sanitize_email(email), "password": password, "returnSecureToken": True},
    )


def register(email, password):
    return _post(
        "signUp",
        {"email": sanitize_email(email), "password": password, "returnSecureToken": True},
    )


def send_password_reset(email):
    _post("sendOobCode", {"requestType": "PASSWORD_RESET", "email": sanitize_email(email)})


def delete_account(id_token):
    _post("delete", {"idToken": id_token})


# -- session -----------------------------------------------------------------

def start_session(account):
    session.clear()
    session[SESSION_KEY] = account["localId"]
    session["email"] = account.get("email", "")
    session.permanent = True


def end_session():
    session.clear()


def current_account_id():
    return session.get(SESSION_KEY)


def login_required(view):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if not current_account_id():
            raise AuthenticationError("auth/unauthenticated", "Sign-in required")
        return view(*args, **kwargs)

    return wrapped

import time
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, redirect, request, session, url_for

from .api_client import EscrowApiClient
from .models import AuthTokens, User

TOKENS_KEY = "auth_tokens"


# ===================== Token cache =====================
def store_tokens(tokens: AuthTokens) -> None:
    session[TOKENS_KEY] = tokens.to_dict()
    session.permanent = True


def clear_tokens() -> None:
    session.pop(TOKENS_KEY, None)
    g.pop("api", None)
    g.pop("viewer", None)


def token_expired(token: str) -> bool:
    # Only the expiry is read here; the escrow API verifies the signature.
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return False  # opaque token, let the API decide
    exp = payload.get("exp")
    return exp is not None and float(exp) <= time.time()


def access_token() -> Optional[str]:
    tokens = session.get(TOKENS_KEY) or {}
    token = tokens.get("access_token")
    if token and token_expired(token):
        current_app.logger.info("cached access token expired, clearing session")
        clear_tokens()
        return None
    return token


def is_authenticated() -> bool:
    return bool(access_token())


# ===================== Per-request helpers =====================
def get_api():
    """API client for this request, carrying the viewer's token if any."""
    if "api" not in g:
        factory = current_app.config.get("API_CLIENT_FACTORY")
        token = access_token()
        if factory is not None:
            g.api = factory(token)
        else:
            g.api = EscrowApiClient(
                current_app.config["ESCROW_API_URL"],
                access_token=token,
                timeout=current_app.config["API_TIMEOUT"],
            )
    return g.api


def current_viewer() -> User:
    if "viewer" not in g:
        g.viewer = get_api().current_user()
    return g.viewer


def login_required(f):
    @wraps(f)
    def inner(*args, **kwargs):
        if not is_authenticated():
            # come back here after login
            session["next_after_login"] = request.full_path.rstrip("?")
            return redirect(url_for("auth.login"))
        return f(*args, **kwargs)
    return inner

"""
GitHub OAuth login and the delegated-token lookup used by every GitHub call.

The user's access token is stored Fernet-encrypted in the ``accounts`` table;
the Flask session only carries the user id.
"""

import secrets
from functools import wraps
from urllib.parse import urlencode

import requests
from flask import Blueprint, current_app, g, jsonify, redirect, request, session

from config_manager import TokenCipher
from database import OmniLensDatabase
from errors import AuthError, OmniLensError, UpstreamError
from extensions import get_app_config, get_cipher, get_db
from github_api_client import GitHubApiClient

auth_bp = Blueprint("auth", __name__)


def get_delegated_token(db: OmniLensDatabase, cipher: TokenCipher, user_id: str) -> str:
    """
    Returns the user's plaintext GitHub token.

    :raises AuthError: If no usable token is stored for the user
    """
    token = cipher.decrypt_token(db.get_delegated_token_encrypted(user_id))
    if not token:
        raise AuthError("GitHub access token not found. Please ensure you are logged in with GitHub.")
    return token


def login_required(view):
    """Rejects requests without a logged-in user and exposes the id as g.user_id."""
    @wraps(view)
    def wrapped_view(*args, **kwargs):
        user_id = session.get("user_id")
        if not user_id:
            raise AuthError("Authentication required")
        g.user_id = user_id
        return view(*args, **kwargs)

    return wrapped_view


def _exchange_code_for_token(code: str) -> dict:
    config = get_app_config()
    try:
        response = requests.post(
            f"{config.github_oauth_base}/login/oauth/access_token",
            data={
                "client_id": config.github_client_id,
                "client_secret": config.github_client_secret,
                "code": code,
                "redirect_uri": config.oauth_callback_url,
            },
            headers={"Accept": "application/json", "User-Agent": config.user_agent},
            timeout=config.request_timeout_seconds,
        )
    except requests.exceptions.RequestException as e:
        raise UpstreamError("Unable to reach GitHub") from e

    if response.status_code >= 400:
        raise UpstreamError("GitHub token exchange failed", upstream_status=response.status_code)
    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamError("GitHub token exchange returned invalid JSON") from e

    if not payload.get("access_token"):
        message = payload.get("error_description") or payload.get("error") or "No access token returned"
        raise AuthError(f"GitHub login failed: {message}")
    return payload


@auth_bp.route("/auth/github/login", methods=["GET"])
def github_login():
    config = get_app_config()
    if not config.oauth_configured:
        raise OmniLensError("GitHub OAuth is not configured", status_code=503)

    state = secrets.token_urlsafe(24)
    session["oauth_state"] = state
    query = urlencode({
        "client_id": config.github_client_id,
        "redirect_uri": config.oauth_callback_url,
        "scope": config.oauth_scopes,
        "state": state,
    })
    return redirect(f"{config.github_oauth_base}/login/oauth/authorize?{query}")


@auth_bp.route("/auth/github/callback", methods=["GET"])
def github_callback():
    config = get_app_config()
    expected_state = session.pop("oauth_state", None)
    if not expected_state or request.args.get("state") != expected_state:
        raise AuthError("Invalid OAuth state")

    code = request.args.get("code")
    if not code:
        raise AuthError(request.args.get("error_description") or "Missing OAuth code")

    token_payload = _exchange_code_for_token(code)
    access_token = token_payload["access_token"]

    github_user = GitHubApiClient.from_config(access_token, config).get_authenticated_user()
    user_id = str(github_user["id"])

    db = get_db()
    db.upsert_user(
        user_id,
        login=github_user.get("login", ""),
        name=github_user.get("name"),
        email=github_user.get("email"),
        avatar_url=github_user.get("avatar_url"),
    )
    db.save_delegated_token(user_id, get_cipher().encrypt_token(access_token),
                            scope=token_payload.get("scope"))

    session["user_id"] = user_id
    current_app.logger.info("User %s logged in with GitHub", github_user.get("login"))
    return redirect(f"{config.base_url.rstrip('/')}/dashboard")


@auth_bp.route("/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"success": True})


@auth_bp.route("/api/auth/session", methods=["GET"])
def current_session():
    user_id = session.get("user_id")
    user = get_db().get_user(user_id) if user_id else None
    if user is None:
        return jsonify({"authenticated": False, "user": None})
    return jsonify({
        "authenticated": True,
        "user": {
            "id": user["id"],
            "login": user["login"],
            "name": user["name"],
            "email": user["email"],
            "avatarUrl": user["avatar_url"],
        },
    })

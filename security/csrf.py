import secrets
from flask import request, jsonify, current_app, g

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")

# sign-in happens before a token exists; Stripe signs its own requests
CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/webhooks/stripe",
}

def issue_csrf_token(resp):
    """Double-submit cookie: the client echoes it back in X-CSRF-Token."""
    resp.set_cookie(
        CSRF_COOKIE,
        secrets.token_urlsafe(32),
        httponly=False,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp

def csrf_protect():
    """before_request hook for cookie-authenticated, state-changing calls."""
    if request.method not in UNSAFE_METHODS or request.path in CSRF_EXEMPT_PATHS:
        return None
    if getattr(g, "user", None) is None:
        return None

    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not secrets.compare_digest(cookie_token, header_token):
        return jsonify(error="CSRF validation failed"), 403
    return None

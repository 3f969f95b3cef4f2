"""
Bearer-token identity for the Flask API.

Tokens are issued by the identity provider and carry the user's email; the
API only verifies the signature and expiry and hands the email on.
"""

from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import jsonify, request

from salesops.config import SECRET_KEY, TOKEN_EXPIRY_HOURS


def generate_token(email: str) -> str:
    """Generate a JWT token for *email* (used by dev tooling and tests)."""
    payload = {
        "email": email,
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def token_required(f):
    """Decorator that resolves the caller's email from the Authorization header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Missing authorization header"}), 401

        payload = verify_token(auth_header[7:].strip())
        if not payload:
            return jsonify({"error": "Invalid or expired token"}), 401

        email = str(payload.get("email") or "").strip()
        if not email:
            return jsonify({"error": "Token carries no email"}), 401

        request.identity = email
        return f(*args, **kwargs)

    return decorated

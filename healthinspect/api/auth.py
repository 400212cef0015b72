"""
JWT authentication helpers and middleware for the Flask API.

Sessions live in a process-wide dict shared by the threaded server; every read
and write goes through the helpers below, which hold ``sessions_lock``.
"""

import threading
import uuid
from datetime import datetime, timedelta
from functools import wraps
from typing import Dict, Any, List, Optional

import jwt
from flask import request, jsonify

from healthinspect.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from healthinspect.models import User

# In-memory session store (use Redis in production)
# Structure: {token: {"user_id": str, "created_at": datetime, "last_activity": datetime}}
sessions: Dict[str, Dict[str, Any]] = {}
sessions_lock = threading.Lock()


def generate_token(user: User) -> str:
    """Sign a token naming the user, their role and their home district."""
    now = datetime.utcnow()
    payload = {
        "user_id": user.id,
        "role": user.role,
        "district": user.district,
        "jti": uuid.uuid4().hex,   # two logins in the same second still differ
        "iat": now,
        "exp": now + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        return None


# ── Session store ────────────────────────────────────────────────────

def start_session(token: str, user_id: str) -> None:
    now = datetime.utcnow()
    with sessions_lock:
        sessions[token] = {"user_id": user_id, "created_at": now, "last_activity": now}


def touch_session(token: str) -> Optional[Dict[str, Any]]:
    """Mark the session active and return a copy of it, or None if unknown."""
    with sessions_lock:
        data = sessions.get(token)
        if data is None:
            return None
        data["last_activity"] = datetime.utcnow()
        return dict(data)


def end_session(token: str) -> bool:
    with sessions_lock:
        return sessions.pop(token, None) is not None


def end_user_sessions(user_id: str) -> int:
    """Drop every session belonging to *user_id*; returns how many were removed."""
    with sessions_lock:
        tokens = [t for t, data in sessions.items() if data["user_id"] == user_id]
        for tok in tokens:
            del sessions[tok]
    return len(tokens)


def session_snapshot() -> List[Dict[str, Any]]:
    with sessions_lock:
        return [dict(data) for data in sessions.values()]


def cleanup_expired_sessions() -> int:
    """Remove sessions that have been inactive beyond TOKEN_EXPIRY_HOURS."""
    now = datetime.utcnow()
    with sessions_lock:
        expired = [
            tok for tok, data in sessions.items()
            if (now - data["last_activity"]).total_seconds() > TOKEN_EXPIRY_HOURS * 3600
        ]
        for tok in expired:
            del sessions[tok]
    if expired:
        print(f"[cleanup] Removed {len(expired)} expired sessions")
    return len(expired)


# ── Middleware ───────────────────────────────────────────────────────

def token_required(f):
    """Decorator that protects endpoints with JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = None

        if "Authorization" in request.headers:
            auth_header = request.headers["Authorization"]
            try:
                token = auth_header.split(" ")[1]
            except IndexError:
                return jsonify({"error": "Invalid authorization header format"}), 401

        if not token:
            token = request.args.get("token")

        if not token:
            return jsonify({"error": "Authentication token is missing"}), 401

        payload = verify_token(token)
        if not payload:
            return jsonify({"error": "Invalid or expired token"}), 401

        session_data = touch_session(token)
        if session_data is None or session_data["user_id"] != payload.get("user_id"):
            return jsonify({"error": "Session not found. Please login again."}), 401

        request.session_data = session_data
        request.token = token

        return f(*args, **kwargs)

    return decorated

"""
Flask route handlers for the REST API.
"""

import os
import sys
import traceback
from dataclasses import asdict
from datetime import date, datetime, timedelta
from functools import wraps

from flask import request, jsonify
from sqlalchemy import text as sa_text

from healthinspect import repository
from healthinspect.analysis import (
    compliance_by_district,
    compute_dashboard_stats,
    find_compliance_issues,
    summarize_stats,
)
from healthinspect.config import COMPLIANCE_THRESHOLD, TOKEN_EXPIRY_HOURS
from healthinspect.models import NotFoundError, User
from healthinspect.permissions import (
    get_role_color,
    get_role_display_name,
    get_user_permissions,
    has_permission,
    permissions_to_dict,
    visible_sections,
)
from healthinspect.rbac import build_scope, load_user, load_user_by_id
from healthinspect.api.auth import (
    cleanup_expired_sessions,
    end_session,
    end_user_sessions,
    generate_token,
    session_snapshot,
    start_session,
    token_required,
)


def _jsonable(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def serialize(obj):
    """Dataclass (or list of them) to JSON-friendly dicts."""
    if isinstance(obj, list):
        return [serialize(o) for o in obj]
    return _jsonable(asdict(obj))


def serialize_user(user: User):
    data = serialize(user)
    data["role_display_name"] = get_role_display_name(user.role)
    data["role_color"] = get_role_color(user.role)
    return data


def _json_body():
    if not request.is_json:
        raise ValueError("Content-Type must be application/json")
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def register_routes(app, engine):
    """Register all API routes on the Flask *app*."""

    def requires(flag=None):
        """Authenticate, reload the user, check *flag* and attach user + scope."""
        def wrapper(f):
            @wraps(f)
            @token_required
            def decorated(*args, **kwargs):
                user = load_user_by_id(engine, request.session_data["user_id"])
                if user is None or not user.is_active:
                    end_session(request.token)
                    return jsonify({"error": "Account is no longer active. Please login again."}), 401
                if flag and not has_permission(user, flag):
                    return jsonify({
                        "error": "Forbidden",
                        "details": f"{get_role_display_name(user.role)} lacks {flag}",
                    }), 403
                try:
                    scope = build_scope(user)
                except ValueError as e:
                    return jsonify({"error": "Forbidden", "details": str(e)}), 403
                request.user = user
                request.scope = scope
                return f(*args, **kwargs)
            return decorated
        return wrapper

    def handle_errors(f):
        """Map domain exceptions onto HTTP status codes."""
        @wraps(f)
        def decorated(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValueError as e:
                return jsonify({"success": False, "error": "Validation failed", "details": str(e)}), 400
            except NotFoundError as e:
                return jsonify({"success": False, "error": "Not found", "details": str(e)}), 404
            except PermissionError as e:
                return jsonify({"success": False, "error": "Forbidden", "details": str(e)}), 403
            except Exception as e:
                print(f"[ERROR] {f.__name__} failed: {e}", file=sys.stderr)
                traceback.print_exc()
                return jsonify({"success": False, "error": "Internal server error"}), 500
        return decorated

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "HealthInspect API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "facilities": "/api/facilities",
                "inspections": "/api/inspections",
                "schedules": "/api/schedules",
                "users": "/api/users",
                "dashboard": "/api/dashboard",
                "compliance": "/api/reports/compliance",
                "logout": "/api/auth/logout",
                "password": "/api/user/password",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False}
        try:
            with engine.connect() as conn:
                conn.execute(sa_text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            print(f"[WARN] Health check could not reach DB: {e}", file=sys.stderr)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(session_snapshot()),
        }), 200 if all_healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        try:
            data = _json_body()
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        email = str(data.get("email") or "").strip()
        password = str(data.get("password") or "")
        if not email or not password:
            return jsonify({"error": "email and password are required"}), 400

        cleanup_expired_sessions()
        try:
            user = load_user(engine, email, password)
            scope = build_scope(user)
            token = generate_token(user)
            start_session(token, user.id)
            print(f"[auth] Logged in: {user.email} (role={user.role})")

            return jsonify({
                "success": True,
                "token": token,
                "user": serialize_user(user),
                "permissions": permissions_to_dict(get_user_permissions(user)),
                "scope": scope.notes,
                "sections": [{"id": s, "label": label} for s, label in visible_sections(user)],
                "expires_at": (datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat(),
            }), 200

        except ValueError as e:
            return jsonify({"error": f"Authentication failed: {str(e)}"}), 401
        except Exception as e:
            print(f"[ERROR] Login error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Internal server error during login"}), 500

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        end_session(request.token)
        return jsonify({"success": True, "message": "Logged out successfully"}), 200

    @app.route("/api/user/profile", methods=["GET"])
    @requires()
    def get_profile():
        session_data = request.session_data
        return jsonify({
            "success": True,
            "user": serialize_user(request.user),
            "scope": request.scope.notes,
            "session": {
                "created_at": session_data["created_at"].isoformat(),
                "last_activity": session_data["last_activity"].isoformat(),
            },
        }), 200

    @app.route("/api/user/permissions", methods=["GET"])
    @requires()
    def get_permissions():
        user = request.user
        return jsonify({
            "success": True,
            "role": user.role,
            "role_display_name": get_role_display_name(user.role),
            "permissions": permissions_to_dict(get_user_permissions(user)),
            "sections": [{"id": s, "label": label} for s, label in visible_sections(user)],
        }), 200

    @app.route("/api/user/password", methods=["POST"])
    @requires()
    @handle_errors
    def change_password():
        data = _json_body()
        repository.change_password(
            engine,
            request.user,
            data.get("current_password"),
            data.get("new_password"),
            data.get("confirm_password"),
        )
        return jsonify({"success": True, "message": "Password updated"}), 200

    # ── Facilities ───────────────────────────────────────────────────

    @app.route("/api/facilities", methods=["GET"])
    @requires("can_view_facilities")
    @handle_errors
    def list_facilities():
        filters = {k: request.args.get(k) for k in ("district", "type", "assigned_inspector_id", "search")}
        facilities = repository.get_facilities(engine, request.scope, filters)
        return jsonify({"success": True, "count": len(facilities), "facilities": serialize(facilities)}), 200

    @app.route("/api/facilities", methods=["POST"])
    @requires("can_add_facilities")
    @handle_errors
    def add_facility():
        facility = repository.create_facility(engine, request.user, _json_body())
        return jsonify({"success": True, "facility": serialize(facility)}), 201

    @app.route("/api/facilities/<facility_id>", methods=["GET"])
    @requires("can_view_facilities")
    @handle_errors
    def get_facility(facility_id):
        facility = repository.get_facility(engine, request.scope, facility_id)
        return jsonify({"success": True, "facility": serialize(facility)}), 200

    @app.route("/api/facilities/<facility_id>", methods=["PUT"])
    @requires("can_edit_facilities")
    @handle_errors
    def edit_facility(facility_id):
        facility = repository.update_facility(engine, request.user, facility_id, _json_body())
        return jsonify({"success": True, "facility": serialize(facility)}), 200

    @app.route("/api/facilities/<facility_id>", methods=["DELETE"])
    @requires("can_delete_facilities")
    @handle_errors
    def remove_facility(facility_id):
        repository.delete_facility(engine, request.user, facility_id)
        return jsonify({"success": True, "message": "Facility deleted"}), 200

    # ── Inspections ──────────────────────────────────────────────────

    @app.route("/api/inspections", methods=["GET"])
    @requires("can_view_inspections")
    @handle_errors
    def list_inspections():
        filters = {k: request.args.get(k) for k in ("facility_id", "inspector_id", "status", "district", "type")}
        inspections = repository.get_inspections(engine, request.scope, filters)
        return jsonify({"success": True, "count": len(inspections), "inspections": serialize(inspections)}), 200

    @app.route("/api/inspections", methods=["POST"])
    @requires("can_conduct_inspections")
    @handle_errors
    def conduct_inspection():
        inspection = repository.create_inspection(engine, request.user, _json_body())
        return jsonify({"success": True, "inspection": serialize(inspection)}), 201

    @app.route("/api/inspections/<inspection_id>", methods=["GET"])
    @requires("can_view_inspections")
    @handle_errors
    def get_inspection(inspection_id):
        inspection = repository.get_inspection_by_id(engine, request.scope, inspection_id)
        return jsonify({"success": True, "inspection": serialize(inspection)}), 200

    @app.route("/api/inspections/<inspection_id>/status", methods=["PATCH"])
    @requires("can_view_inspections")
    @handle_errors
    def change_inspection_status(inspection_id):
        inspection = repository.update_inspection_status(
            engine, request.user, request.scope, inspection_id, _json_body().get("status"),
        )
        return jsonify({"success": True, "inspection": serialize(inspection)}), 200

    # ── Schedules ────────────────────────────────────────────────────

    @app.route("/api/schedules", methods=["GET"])
    @requires("can_view_inspections")
    @handle_errors
    def list_schedules():
        schedules = repository.get_inspection_schedules(engine, request.scope)
        return jsonify({"success": True, "count": len(schedules), "schedules": serialize(schedules)}), 200

    @app.route("/api/schedules", methods=["POST"])
    @requires("can_add_facilities")
    @handle_errors
    def add_schedule():
        schedule = repository.create_inspection_schedule(engine, request.user, _json_body())
        return jsonify({"success": True, "schedule": serialize(schedule)}), 201

    @app.route("/api/schedules/<schedule_id>", methods=["PATCH"])
    @requires("can_view_inspections")
    @handle_errors
    def change_schedule_status(schedule_id):
        schedule = repository.update_schedule_status(
            engine, request.user, request.scope, schedule_id, _json_body().get("status"),
        )
        return jsonify({"success": True, "schedule": serialize(schedule)}), 200

    @app.route("/api/schedules/<schedule_id>", methods=["DELETE"])
    @requires("can_add_facilities")
    @handle_errors
    def remove_schedule(schedule_id):
        repository.delete_schedule(engine, request.user, request.scope, schedule_id)
        return jsonify({"success": True, "message": "Schedule deleted"}), 200

    # ── Users ────────────────────────────────────────────────────────

    @app.route("/api/users", methods=["GET"])
    @requires("can_view_users")
    @handle_errors
    def list_users():
        users = repository.get_users(engine, request.user)
        return jsonify({"success": True, "count": len(users), "users": [serialize_user(u) for u in users]}), 200

    @app.route("/api/users", methods=["POST"])
    @requires("can_add_users")
    @handle_errors
    def add_user():
        user = repository.create_user(engine, request.user, _json_body())
        return jsonify({"success": True, "user": serialize_user(user)}), 201

    @app.route("/api/users/<user_id>", methods=["PUT"])
    @requires("can_edit_users")
    @handle_errors
    def edit_user(user_id):
        user = repository.update_user(engine, request.user, user_id, _json_body())
        return jsonify({"success": True, "user": serialize_user(user)}), 200

    @app.route("/api/users/<user_id>/active", methods=["PATCH"])
    @requires("can_suspend_users")
    @handle_errors
    def toggle_user_active(user_id):
        data = _json_body()
        if not isinstance(data.get("is_active"), bool):
            raise ValueError("is_active must be true or false")
        user = repository.set_user_active(engine, request.user, user_id, data["is_active"])
        if not user.is_active:
            dropped = end_user_sessions(user_id)
            print(f"[auth] Suspended {user.email}; ended {dropped} session(s)")
        return jsonify({"success": True, "user": serialize_user(user)}), 200

    @app.route("/api/users/<user_id>", methods=["DELETE"])
    @requires("can_delete_users")
    @handle_errors
    def remove_user(user_id):
        repository.delete_user(engine, request.user, user_id)
        return jsonify({"success": True, "message": "User deleted"}), 200

    # ── Dashboard / reports ──────────────────────────────────────────

    @app.route("/api/dashboard", methods=["GET"])
    @requires("can_view_dashboard")
    @handle_errors
    def dashboard():
        facilities = repository.get_facilities(engine, request.scope)
        inspections = repository.get_inspections(engine, request.scope)
        stats = compute_dashboard_stats(facilities, inspections)
        return jsonify({
            "success": True,
            "stats": stats,
            "summary": summarize_stats(stats, get_user_permissions(request.user)),
        }), 200

    @app.route("/api/reports/compliance", methods=["GET"])
    @requires("can_view_reports")
    @handle_errors
    def compliance_report():
        threshold = float(request.args.get("threshold", COMPLIANCE_THRESHOLD))
        filters = {k: request.args.get(k) for k in ("district", "type")}
        facilities = repository.get_facilities(engine, request.scope, filters)
        return jsonify({
            "success": True,
            "threshold": threshold,
            "issues": find_compliance_issues(facilities, threshold),
            "by_district": compliance_by_district(facilities),
        }), 200

    @app.route("/api/sessions", methods=["GET"])
    def get_sessions_info():
        if os.getenv("FLASK_ENV") != "development":
            return jsonify({"error": "Not available in production"}), 403

        sessions_info = [
            {
                "user_id": data["user_id"],
                "created_at": data["created_at"].isoformat(),
                "last_activity": data["last_activity"].isoformat(),
            }
            for data in session_snapshot()
        ]
        return jsonify({
            "active_sessions": len(sessions_info),
            "sessions": sessions_info,
        }), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error", "message": str(e)}), 500

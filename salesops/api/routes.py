"""
Flask route handlers for the REST API.
"""

import asyncio
import sys
import traceback

from flask import jsonify, request

from salesops.deals import (
    DealFilters,
    add_deal,
    compute_deal_kpis,
    fetch_deals,
    filter_options,
    update_deal,
)
from salesops.errors import DirectoryError
from salesops.models import AuthorizationState
from salesops.rbac import require_module, resolve_authorization
from salesops.api.auth import token_required


def _state_json(state: AuthorizationState) -> dict:
    auth = state.authorization
    pu = auth.portal_user if auth else None
    return {
        "status": state.status,
        "is_loading": state.is_loading,
        "effective_scope": (
            state.effective_scope.value if state.status in ("resolved", "unauthorized") else None
        ),
        "effective_modules": list(state.effective_modules),
        "visibility": state.visibility.to_json(),
        "user": {
            "id": pu.id,
            "email": pu.email,
            "display_name": pu.display_name,
            "role": auth.role.name if auth.role else None,
        } if pu else None,
        "error": str(state.error) if state.error else None,
    }


def _filters_from_args(args) -> DealFilters:
    return DealFilters(
        start_date=args.get("start_date") or None,
        end_date=args.get("end_date") or None,
        sales_reps=args.getlist("sales_rep"),
        cc_setters=args.getlist("cc_setter"),
        installers=args.getlist("installer"),
        statuses=args.getlist("status"),
        customer_q=args.get("customer", ""),
    )


def register_routes(app, engine, directories, catalog):
    """Register all API routes on the Flask *app*."""

    def current_state() -> AuthorizationState:
        try:
            auth = asyncio.run(resolve_authorization(request.identity, directories))
        except DirectoryError as e:
            print(f"[ERROR] scope resolution failed for {request.identity}: {e}", file=sys.stderr)
            return AuthorizationState.failed(e)
        return AuthorizationState.from_authorization(auth)

    def denied(state: AuthorizationState, module: str):
        """Response for a caller lacking *module*, or None when allowed."""
        if state.status == "failed":
            return jsonify({
                "error": "Could not determine access",
                "details": str(state.error),
            }), 503
        try:
            require_module(state, module)
        except PermissionError as e:
            return jsonify({"error": str(e)}), 403
        return None

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "Sales Ops Portal API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "access": "/api/me/access",
                "deals": "/api/deals",
                "positions": "/api/org/positions",
                "departments": "/api/org/departments",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        from sqlalchemy import text as sa_text

        checks = {"database": False}
        try:
            with engine.connect() as conn:
                conn.execute(sa_text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            print(f"[WARN] health check failed: {e}", file=sys.stderr)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }), 200 if all_healthy else 503

    # ── Access ───────────────────────────────────────────────────────

    @app.route("/api/me/access", methods=["GET"])
    @token_required
    def get_access():
        state = current_state()
        body = _state_json(state)
        if state.status == "failed":
            return jsonify(body), 503
        if state.status == "unauthorized":
            return jsonify(body), 403
        return jsonify(body), 200

    # ── Deals ────────────────────────────────────────────────────────

    @app.route("/api/deals", methods=["GET"])
    @token_required
    def list_deals():
        state = current_state()
        resp = denied(state, "sales")
        if resp:
            return resp

        filters = _filters_from_args(request.args)
        try:
            df = fetch_deals(engine, state.visibility, filters)
        except Exception as e:
            print(f"[ERROR] Deal query failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"success": False, "error": "Deal query failed", "details": str(e)}), 500

        return jsonify({
            "success": True,
            "scope": state.effective_scope.value,
            "row_count": len(df),
            "data": df.astype(object).where(df.notna(), None).to_dict(orient="records"),
            "kpis": compute_deal_kpis(df),
            "options": filter_options(df, state.visibility),
        }), 200

    @app.route("/api/deals", methods=["POST"])
    @token_required
    def create_deal():
        state = current_state()
        resp = denied(state, "sales")
        if resp:
            return resp
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        try:
            new_id = add_deal(engine, request.json or {})
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] Deal insert failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"success": False, "error": "Deal insert failed", "details": str(e)}), 500
        return jsonify({"success": True, "id": new_id}), 201

    @app.route("/api/deals/<int:deal_id>", methods=["PATCH"])
    @token_required
    def edit_deal(deal_id):
        state = current_state()
        resp = denied(state, "sales")
        if resp:
            return resp
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        try:
            changes = update_deal(engine, deal_id, request.json or {}, state.visibility)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        except PermissionError as e:
            return jsonify({"success": False, "error": str(e)}), 403
        except LookupError as e:
            return jsonify({"success": False, "error": str(e)}), 404
        except Exception as e:
            print(f"[ERROR] Deal update failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"success": False, "error": "Deal update failed", "details": str(e)}), 500

        if not changes:
            return jsonify({"success": True, "message": "No changes.", "changes": {}}), 200
        return jsonify({"success": True, "id": deal_id, "changes": changes}), 200

    # ── Org chart ────────────────────────────────────────────────────

    @app.route("/api/org/positions", methods=["GET"])
    @token_required
    def get_positions():
        resp = denied(current_state(), "org_chart")
        if resp:
            return resp
        return jsonify({"success": True, **catalog.to_dict()}), 200

    @app.route("/api/org/positions", methods=["POST", "PATCH", "DELETE"])
    @token_required
    def change_position():
        resp = denied(current_state(), "org_chart")
        if resp:
            return resp
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json or {}
        dept = (data.get("department") or "").strip()
        if not dept:
            return jsonify({"error": "department is required"}), 400

        if request.method == "POST":
            persisted = catalog.add_position(dept, data.get("position", ""))
        elif request.method == "PATCH":
            persisted = catalog.rename_position(dept, data.get("old_name", ""), data.get("new_name", ""))
        else:
            persisted = catalog.delete_position(dept, data.get("position", ""))

        return jsonify({"success": True, "persisted": persisted, **catalog.to_dict()}), 200

    @app.route("/api/org/positions/order", methods=["PATCH"])
    @token_required
    def order_positions():
        resp = denied(current_state(), "org_chart")
        if resp:
            return resp
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json or {}
        dept = (data.get("department") or "").strip()
        if not dept:
            return jsonify({"error": "department is required"}), 400
        try:
            persisted = catalog.reorder_positions(dept, list(data.get("order") or []))
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        return jsonify({"success": True, "persisted": persisted, **catalog.to_dict()}), 200

    @app.route("/api/org/departments", methods=["POST", "PATCH", "DELETE"])
    @token_required
    def change_department():
        resp = denied(current_state(), "org_chart")
        if resp:
            return resp
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json or {}
        if request.method == "POST":
            persisted = catalog.add_department(data.get("name", ""))
        elif request.method == "PATCH":
            try:
                persisted = catalog.reorder_departments(list(data.get("order") or []))
            except ValueError as e:
                return jsonify({"success": False, "error": str(e)}), 400
        else:
            name = (data.get("name") or "").strip()
            if name not in catalog.departments:
                return jsonify({"success": False, "error": f"Unknown department: {name}"}), 404
            persisted = catalog.delete_department(name)

        return jsonify({"success": True, "persisted": persisted, **catalog.to_dict()}), 200

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

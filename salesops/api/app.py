"""
Flask application factory and server entry-point.
"""

import asyncio
import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from salesops.config import TOKEN_EXPIRY_HOURS
from salesops.database import init_engine
from salesops.directory import Directories
from salesops.org_chart import PositionCatalog
from salesops.api.routes import register_routes


def create_app(engine=None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            print("[init] Initializing database connection...")
            engine = init_engine()

        directories = Directories.from_engine(engine)

        print("[init] Loading org chart catalog...")
        catalog = asyncio.run(PositionCatalog(engine).load())

        print("[init] ✓ API server ready")
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, directories, catalog)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("Sales Ops Portal – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Token expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - GET    http://{host}:{port}/api/me/access")
    print(f"  - GET    http://{host}:{port}/api/deals")
    print(f"  - POST   http://{host}:{port}/api/deals")
    print(f"  - GET    http://{host}:{port}/api/org/positions")
    print(f"  - POST   http://{host}:{port}/api/org/positions")
    print(f"  - PATCH  http://{host}:{port}/api/org/positions")
    print(f"  - DELETE http://{host}:{port}/api/org/positions")
    print(f"  - POST   http://{host}:{port}/api/org/departments")
    print(f"  - GET    http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()

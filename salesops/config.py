"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Directory tables ─────────────────────────────────────────────────
TABLE_PORTAL_USERS = "portal_users"
TABLE_ROLES = "roles"
TABLE_EMPLOYEES = "employees"

# ── Deals ────────────────────────────────────────────────────────────
TABLE_DEALS = "deals"
VIEW_DEALS = "deals_view"
MAX_DEALS_RETURN = 5000

# ── Org chart (shared by the position catalog and the API) ───────────
TABLE_DEPTS = "org_departments"
TABLE_DEPT_ROLES = "org_department_roles"

DEFAULT_DEPARTMENTS = [
    "Executive", "Sales", "Call Center", "Operations", "Finance", "Contingencies",
]

DEFAULT_POSITIONS_BY_DEPT = {
    "Executive": ["CEO", "VP of Sales", "VP of Operations"],
    "Sales": ["Sales Manager", "Sales Rep", "Appointment Setter (US)", "Sales Associate"],
    "Call Center": ["CC Manager", "Appointment Setter", "CC Customer Support"],
    "Operations": [
        "Operations Manager", "Project Manager", "Accounts Manager",
        "Project Coordinator", "Project Admin", "Project Associate",
    ],
    "Finance": ["Chief Accountant", "Accountant", "Payroll Accountant", "Auditor", "Bookkeeper"],
    "Contingencies": ["Videographer", "Editor", "Lead Gen"],
}

# ── Portal modules ───────────────────────────────────────────────────
MODULE_KEYS = {
    "sales", "speed", "rep_portal", "spp", "cc_commissions",
    "payfile", "advances", "user_management", "cc_payroll", "org_chart",
}

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value

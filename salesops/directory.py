"""
Read-only directory clients for portal users, roles and employees.

Rows are validated into typed records here; anything that does not fit is
reported as a TransportFailure rather than passed on half-typed.
"""

import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from salesops.config import MODULE_KEYS, TABLE_EMPLOYEES, TABLE_PORTAL_USERS, TABLE_ROLES
from salesops.database import fetch_rows_async
from salesops.errors import AmbiguousRecordError, TransportFailure
from salesops.models import DataScope, EmployeeRecord, PortalUserRecord, RoleRecord


# ── Row coercion helpers ─────────────────────────────────────────────

def _column(row: Dict[str, Any], table: str, column: str) -> Any:
    if column not in row:
        raise TransportFailure(f"{table} row is missing column '{column}'.")
    return row[column]


def _required(row: Dict[str, Any], table: str, column: str) -> Any:
    value = _column(row, table, column)
    if value is None:
        raise TransportFailure(f"{table}.{column} is NULL.")
    return value


def _opt_str(row: Dict[str, Any], table: str, column: str) -> Optional[str]:
    value = _column(row, table, column)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _as_bool(value: Any, table: str, column: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise TransportFailure(f"{table}.{column} is not a boolean: {value!r}")


def _as_scope(value: Any, table: str, column: str) -> DataScope:
    try:
        return DataScope(str(value).strip().lower())
    except ValueError:
        raise TransportFailure(f"{table}.{column} has unsupported scope {value!r}.") from None


def _as_modules(value: Any, table: str, column: str) -> Tuple[str, ...]:
    # Array columns arrive as lists; JSON text columns as strings.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise TransportFailure(f"{table}.{column} is not a JSON list.") from None
    if not isinstance(value, (list, tuple)) or not all(isinstance(m, str) for m in value):
        raise TransportFailure(f"{table}.{column} is not a list of module names.")
    unknown = sorted(set(value) - MODULE_KEYS)
    if unknown:
        print(f"[WARN] {table}.{column} names unknown modules: {', '.join(unknown)}", file=sys.stderr)
    return tuple(value)


def _single(rows: List[Dict[str, Any]], table: str, key: str, value) -> Optional[Dict[str, Any]]:
    if len(rows) > 1:
        raise AmbiguousRecordError(table, key, value, len(rows))
    return rows[0] if rows else None


# ── Row → record ─────────────────────────────────────────────────────

def portal_user_from_row(row: Dict[str, Any]) -> PortalUserRecord:
    t = TABLE_PORTAL_USERS
    modules = _column(row, t, "module_overrides")
    scope = _column(row, t, "data_scope_override")
    return PortalUserRecord(
        id=str(_required(row, t, "id")),
        email=str(_required(row, t, "email")),
        display_name=str(_required(row, t, "display_name")),
        role_id=_opt_str(row, t, "role_id"),
        linked_name=_opt_str(row, t, "linked_name"),
        linked_employee_id=_opt_str(row, t, "linked_employee_id"),
        module_overrides=_as_modules(modules, t, "module_overrides") if modules is not None else None,
        data_scope_override=_as_scope(scope, t, "data_scope_override") if scope is not None else None,
        is_active=_as_bool(_required(row, t, "is_active"), t, "is_active"),
    )


def role_from_row(row: Dict[str, Any]) -> RoleRecord:
    t = TABLE_ROLES
    return RoleRecord(
        id=str(_required(row, t, "id")),
        name=str(_required(row, t, "name")),
        allowed_modules=_as_modules(_required(row, t, "allowed_modules"), t, "allowed_modules"),
        data_scope=_as_scope(_required(row, t, "data_scope"), t, "data_scope"),
    )


def employee_from_row(row: Dict[str, Any]) -> EmployeeRecord:
    t = TABLE_EMPLOYEES
    return EmployeeRecord(
        id=str(_required(row, t, "id")),
        full_name=str(_required(row, t, "full_name")).strip(),
        manager_id=_opt_str(row, t, "manager_id"),
        is_active=_as_bool(_required(row, t, "is_active"), t, "is_active"),
    )


# ── Clients ──────────────────────────────────────────────────────────

class PortalUserDirectory:
    """Lookup of portal users by login email."""

    SQL = (
        "SELECT id, email, display_name, role_id, linked_name, linked_employee_id, "
        "module_overrides, data_scope_override, is_active "
        f"FROM {TABLE_PORTAL_USERS} WHERE email = :email"
    )

    def __init__(self, engine):
        self._engine = engine

    async def get_by_identity(self, identity: str) -> Optional[PortalUserRecord]:
        rows = await fetch_rows_async(self._engine, self.SQL, {"email": identity})
        row = _single(rows, TABLE_PORTAL_USERS, "email", identity)
        return portal_user_from_row(row) if row else None


class RoleDirectory:
    """Lookup of roles by id."""

    SQL = f"SELECT id, name, allowed_modules, data_scope FROM {TABLE_ROLES} WHERE id = :id"

    def __init__(self, engine):
        self._engine = engine

    async def get(self, role_id: str) -> Optional[RoleRecord]:
        rows = await fetch_rows_async(self._engine, self.SQL, {"id": role_id})
        row = _single(rows, TABLE_ROLES, "id", role_id)
        return role_from_row(row) if row else None


class EmployeeDirectory:
    """Name lookups over the employee hierarchy."""

    SQL_BY_ID = f"SELECT id, full_name FROM {TABLE_EMPLOYEES} WHERE id = :id"
    SQL_REPORTS = (
        f"SELECT id, full_name, manager_id, is_active FROM {TABLE_EMPLOYEES} "
        "WHERE manager_id = :manager_id AND is_active = :active "
        "ORDER BY full_name"
    )

    def __init__(self, engine):
        self._engine = engine

    async def get_full_name(self, employee_id: str) -> Optional[str]:
        rows = await fetch_rows_async(self._engine, self.SQL_BY_ID, {"id": employee_id})
        row = _single(rows, TABLE_EMPLOYEES, "id", employee_id)
        if row is None:
            return None
        return _opt_str(row, TABLE_EMPLOYEES, "full_name")

    async def list_active_reports(self, manager_id: str) -> List[EmployeeRecord]:
        rows = await fetch_rows_async(
            self._engine, self.SQL_REPORTS, {"manager_id": manager_id, "active": True},
        )
        reports = [employee_from_row(r) for r in rows]
        # Active direct reports only, whatever the driver did with the boolean bind.
        return [e for e in reports if e.is_active and e.manager_id == manager_id]


@dataclass
class Directories:
    """The three directory clients the scope resolver depends on."""
    portal_users: Any
    roles: Any
    employees: Any

    @classmethod
    def from_engine(cls, engine) -> "Directories":
        return cls(
            portal_users=PortalUserDirectory(engine),
            roles=RoleDirectory(engine),
            employees=EmployeeDirectory(engine),
        )

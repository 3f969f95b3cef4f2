"""
Org-chart position catalog: departments and the positions inside each one.

Stored rows override the built-in defaults; the catalog is always usable,
even when the tables are empty or unreachable.
"""

import asyncio
import copy
import sys
from typing import Callable, Dict, List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from salesops.config import (
    DEFAULT_DEPARTMENTS,
    DEFAULT_POSITIONS_BY_DEPT,
    TABLE_DEPT_ROLES,
    TABLE_DEPTS,
)
from salesops.database import fetch_rows_async
from salesops.errors import DirectoryError


class PositionCatalog:
    """In-memory catalog backed by org_departments / org_department_roles."""

    def __init__(self, engine):
        self._engine = engine
        self.departments: List[str] = list(DEFAULT_DEPARTMENTS)
        self.positions_by_dept: Dict[str, List[str]] = copy.deepcopy(DEFAULT_POSITIONS_BY_DEPT)

    # ── Loading ──────────────────────────────────────────────────────

    async def load(self) -> "PositionCatalog":
        """Read both tables concurrently and merge them over the defaults."""
        dept_rows, role_rows = await asyncio.gather(
            fetch_rows_async(
                self._engine,
                f"SELECT id, name, sort_order FROM {TABLE_DEPTS} ORDER BY sort_order",
            ),
            fetch_rows_async(
                self._engine,
                f"SELECT id, department_name, role_name, sort_order FROM {TABLE_DEPT_ROLES} "
                "ORDER BY sort_order",
            ),
            return_exceptions=True,
        )

        if isinstance(dept_rows, DirectoryError):
            print(f"[WARN] could not load departments, using defaults: {dept_rows}", file=sys.stderr)
            dept_rows = []
        elif isinstance(dept_rows, BaseException):
            raise dept_rows
        if isinstance(role_rows, DirectoryError):
            print(f"[WARN] could not load positions, using defaults: {role_rows}", file=sys.stderr)
            role_rows = []
        elif isinstance(role_rows, BaseException):
            raise role_rows

        if dept_rows:
            self.departments = [str(r["name"]) for r in dept_rows]
        else:
            self.departments = list(DEFAULT_DEPARTMENTS)

        positions = copy.deepcopy(DEFAULT_POSITIONS_BY_DEPT)
        if role_rows:
            by_dept: Dict[str, List[str]] = {}
            for r in role_rows:
                by_dept.setdefault(str(r["department_name"]), []).append(str(r["role_name"]))
            positions.update(by_dept)
        self.positions_by_dept = positions

        print(f"[org] Loaded {len(self.departments)} departments.")
        return self

    def to_dict(self) -> dict:
        return {
            "departments": list(self.departments),
            "positions_by_dept": {d: list(p) for d, p in self.positions_by_dept.items()},
        }

    # ── Mutations ────────────────────────────────────────────────────
    # Local state changes first; a failed write is reported and returns False.

    def _transaction(self, work: Callable) -> bool:
        try:
            with self._engine.begin() as conn:
                work(conn)
        except SQLAlchemyError as e:
            print(f"[WARN] org chart write failed: {e}", file=sys.stderr)
            return False
        return True

    def _write(self, sql: str, params: dict) -> bool:
        return self._transaction(lambda conn: conn.execute(text(sql), params))

    def _store_order(self, update_sql: str, insert_sql: str, rows: List[dict]) -> bool:
        """Upsert sort_order for every row: update in place, insert rows still on defaults."""
        def work(conn):
            for params in rows:
                if not conn.execute(text(update_sql), params).rowcount:
                    conn.execute(text(insert_sql), params)

        return self._transaction(work)

    @staticmethod
    def _check_permutation(current: List[str], order: List[str], what: str) -> List[str]:
        order = [(o or "").strip() for o in order]
        if sorted(order) != sorted(current):
            raise ValueError(f"New {what} order must list exactly the current {what}s.")
        return order

    def add_department(self, name: str) -> bool:
        name = (name or "").strip()
        if not name or name in self.departments:
            return False
        self.departments.append(name)
        self.positions_by_dept.setdefault(name, [])
        return self._write(
            f"INSERT INTO {TABLE_DEPTS} (name, sort_order) VALUES (:name, :sort_order)",
            {"name": name, "sort_order": len(self.departments) - 1},
        )

    def add_position(self, dept: str, position: str) -> bool:
        trimmed = (position or "").strip()
        if not trimmed:
            return False
        current = self.positions_by_dept.setdefault(dept, [])
        if trimmed in current:
            return False
        sort_order = len(current)
        current.append(trimmed)
        return self._write(
            f"INSERT INTO {TABLE_DEPT_ROLES} (department_name, role_name, sort_order) "
            "VALUES (:dept, :role, :sort_order)",
            {"dept": dept, "role": trimmed, "sort_order": sort_order},
        )

    def rename_position(self, dept: str, old_name: str, new_name: str) -> bool:
        trimmed = (new_name or "").strip()
        if not trimmed or trimmed == old_name:
            return False
        current = self.positions_by_dept.get(dept, [])
        if old_name not in current:
            return False
        current[current.index(old_name)] = trimmed
        return self._write(
            f"UPDATE {TABLE_DEPT_ROLES} SET role_name = :new "
            "WHERE department_name = :dept AND role_name = :old",
            {"new": trimmed, "dept": dept, "old": old_name},
        )

    def delete_position(self, dept: str, position: str) -> bool:
        self.positions_by_dept[dept] = [p for p in self.positions_by_dept.get(dept, []) if p != position]
        return self._write(
            f"DELETE FROM {TABLE_DEPT_ROLES} WHERE department_name = :dept AND role_name = :role",
            {"dept": dept, "role": position},
        )

    def delete_department(self, name: str) -> bool:
        """Drop a department together with all of its positions."""
        if name not in self.departments:
            return False
        self.departments.remove(name)
        self.positions_by_dept.pop(name, None)

        def work(conn):
            conn.execute(text(f"DELETE FROM {TABLE_DEPTS} WHERE name = :name"), {"name": name})
            conn.execute(
                text(f"DELETE FROM {TABLE_DEPT_ROLES} WHERE department_name = :name"), {"name": name},
            )

        return self._transaction(work)

    def reorder_departments(self, order: List[str]) -> bool:
        self.departments = self._check_permutation(self.departments, order, "department")
        return self._store_order(
            f"UPDATE {TABLE_DEPTS} SET sort_order = :sort_order WHERE name = :name",
            f"INSERT INTO {TABLE_DEPTS} (name, sort_order) VALUES (:name, :sort_order)",
            [{"name": n, "sort_order": i} for i, n in enumerate(self.departments)],
        )

    def reorder_positions(self, dept: str, order: List[str]) -> bool:
        current = self.positions_by_dept.get(dept, [])
        self.positions_by_dept[dept] = self._check_permutation(current, order, "position")
        return self._store_order(
            f"UPDATE {TABLE_DEPT_ROLES} SET sort_order = :sort_order "
            "WHERE department_name = :dept AND role_name = :role",
            f"INSERT INTO {TABLE_DEPT_ROLES} (department_name, role_name, sort_order) "
            "VALUES (:dept, :role, :sort_order)",
            [{"dept": dept, "role": r, "sort_order": i} for i, r in enumerate(self.positions_by_dept[dept])],
        )

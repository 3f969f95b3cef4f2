"""
Deal listing, filtering, insertion, editing and KPI summaries.

The resolver only hands out a Visibility; this module is where it is applied
to the sales_rep predicate of every deal query.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from salesops.config import MAX_DEALS_RETURN, TABLE_DEALS, VIEW_DEALS
from salesops.models import Visibility


DEAL_COLUMNS = [
    "id", "sales_rep", "company", "customer_name", "appointment_setter",
    "call_center_appointment_setter", "kw_system", "agent_cost_basis_sold_at",
    "net_price_per_watt", "contract_value", "contract_net_price", "status",
    "date_closed", "manager", "notes",
]

NUMERIC_COLUMNS = {
    "kw_system", "agent_cost_basis_sold_at", "net_price_per_watt",
    "contract_value", "contract_net_price",
}

EDITABLE_COLUMNS = [c for c in DEAL_COLUMNS if c != "id"]


@dataclass
class DealFilters:
    """User-selected filters; empty lists and None mean "no filter"."""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    sales_reps: List[str] = field(default_factory=list)
    cc_setters: List[str] = field(default_factory=list)
    installers: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    customer_q: str = ""


# ── Query building ───────────────────────────────────────────────────

def build_deals_query(
    visibility: Visibility, filters: DealFilters, limit: int = MAX_DEALS_RETURN
) -> Optional[Tuple[TextClause, Dict[str, Any]]]:
    """
    Build the deal listing statement for *visibility* and *filters*.

    Returns None when the caller may see nothing, so no query is issued.
    """
    if visibility.is_empty:
        return None

    where: List[str] = []
    params: Dict[str, Any] = {}
    expanding: List[str] = []

    def add_in(column: str, name: str, values: List[str]) -> None:
        where.append(f"{column} IN :{name}")
        params[name] = list(values)
        expanding.append(name)

    # Owner predicate: user-picked reps are intersected with the visibility set.
    if filters.sales_reps:
        reps = [r for r in filters.sales_reps if visibility.allows(r)]
        if not reps:
            return None
        add_in("sales_rep", "sales_reps", reps)
    elif not visibility.is_unrestricted:
        add_in("sales_rep", "sales_reps", visibility.names)

    if filters.start_date:
        where.append("date_closed >= :start_date")
        params["start_date"] = filters.start_date
    if filters.end_date:
        where.append("date_closed <= :end_date")
        params["end_date"] = filters.end_date
    if filters.cc_setters:
        add_in("call_center_appointment_setter", "cc_setters", filters.cc_setters)
    if filters.installers:
        add_in("company", "installers", filters.installers)
    if filters.statuses:
        add_in("status", "statuses", filters.statuses)
    if filters.customer_q.strip():
        where.append("LOWER(customer_name) LIKE :customer_q")
        params["customer_q"] = f"%{filters.customer_q.strip().lower()}%"

    sql = f"SELECT {', '.join(DEAL_COLUMNS)} FROM {VIEW_DEALS}"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY date_closed DESC LIMIT :limit"
    params["limit"] = int(limit)

    stmt = text(sql)
    if expanding:
        stmt = stmt.bindparams(*[bindparam(name, expanding=True) for name in expanding])
    return stmt, params


def fetch_deals(engine, visibility: Visibility, filters: DealFilters,
                limit: int = MAX_DEALS_RETURN) -> pd.DataFrame:
    """Run the scoped deal query; an empty visibility yields an empty frame."""
    built = build_deals_query(visibility, filters, limit)
    if built is None:
        return pd.DataFrame(columns=DEAL_COLUMNS)
    stmt, params = built
    with engine.connect() as conn:
        return pd.read_sql_query(stmt, conn, params=params)


def _uniq_sorted(values: pd.Series) -> List[str]:
    out = {str(v).strip() for v in values.dropna() if str(v).strip()}
    return sorted(out, key=str.lower)


def filter_options(df: pd.DataFrame, visibility: Visibility) -> Dict[str, List[str]]:
    """Distinct values for the filter dropdowns; reps limited to the visibility set."""
    if df.empty:
        return {"sales_reps": [], "cc_setters": [], "installers": [], "statuses": []}
    reps = _uniq_sorted(df["sales_rep"])
    return {
        "sales_reps": [r for r in reps if visibility.allows(r)],
        "cc_setters": _uniq_sorted(df["call_center_appointment_setter"]),
        "installers": _uniq_sorted(df["company"]),
        "statuses": _uniq_sorted(df["status"]),
    }


# ── Insert / update ──────────────────────────────────────────────────

def _normalise(key: str, value: Any) -> Any:
    """Blank → None, numeric fields → float, text trimmed."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if key in NUMERIC_COLUMNS:
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Field {key} must be numeric, got {value!r}") from None
    if isinstance(value, str):
        return value.strip()
    return value


def clean_deal_payload(payload: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate a deal payload; numeric fields coerced, text trimmed.

    For a new deal blanks are dropped and an owner or customer is required.
    With *partial* (edits) every given key is kept and blanks become None.
    """
    unknown = set(payload) - set(EDITABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown deal fields: {', '.join(sorted(unknown))}")

    clean: Dict[str, Any] = {}
    for key in EDITABLE_COLUMNS:
        if key not in payload:
            continue
        value = _normalise(key, payload[key])
        if value is None and not partial:
            continue
        clean[key] = value

    if not partial and not clean.get("customer_name") and not clean.get("sales_rep"):
        raise ValueError("At least Customer Name or Sales Rep is required.")
    return clean


def add_deal(engine, payload: Dict[str, Any]):
    """Insert a deal and return its new id."""
    clean = clean_deal_payload(payload)
    cols = list(clean)
    sql = text(
        f"INSERT INTO {TABLE_DEALS} ({', '.join(cols)}) "
        f"VALUES ({', '.join(':' + c for c in cols)}) RETURNING id"
    )
    with engine.begin() as conn:
        new_id = conn.execute(sql, clean).scalar()
    if new_id is None:
        raise RuntimeError("Insert failed – check database permissions.")
    return new_id


def update_deal(engine, deal_id, payload: Dict[str, Any],
                visibility: Optional[Visibility] = None) -> Dict[str, Any]:
    """
    Write only the fields of *payload* that differ from the stored deal.

    Returns the changed fields; an empty dict means nothing needed saving.
    A deal outside *visibility* is reported as missing, and it cannot be
    handed to a rep the caller may not see.
    """
    visibility = visibility or Visibility.unrestricted()
    wanted = clean_deal_payload(payload, partial=True)

    with engine.begin() as conn:
        row = conn.execute(
            text(f"SELECT {', '.join(DEAL_COLUMNS)} FROM {TABLE_DEALS} WHERE id = :deal_id"),
            {"deal_id": deal_id},
        ).mappings().first()
        if row is None or not visibility.allows(row["sales_rep"]):
            raise LookupError(f"Deal {deal_id} not found.")

        stored = {k: _normalise(k, row[k]) for k in EDITABLE_COLUMNS}
        changes = {k: v for k, v in wanted.items() if stored[k] != v}
        if not changes:
            return {}

        merged = {**stored, **changes}
        if not merged.get("customer_name") and not merged.get("sales_rep"):
            raise ValueError("At least Customer Name or Sales Rep is required.")
        if "sales_rep" in changes and not visibility.allows(changes["sales_rep"]):
            raise PermissionError(f"Forbidden: cannot assign deals to {changes['sales_rep']}")

        assignments = ", ".join(f"{c} = :{c}" for c in changes)
        result = conn.execute(
            text(f"UPDATE {TABLE_DEALS} SET {assignments} WHERE id = :deal_id"),
            {**changes, "deal_id": deal_id},
        )
        if not result.rowcount:
            raise RuntimeError("Save failed – row not updated. Check database permissions.")
    return changes


# ── KPIs ─────────────────────────────────────────────────────────────

def compute_deal_kpis(df: pd.DataFrame) -> Dict[str, Any]:
    """Headline numbers for a deal listing."""
    if df.empty:
        return {
            "deal_count": 0,
            "total_contract_value": 0.0,
            "total_kw": 0.0,
            "avg_net_price_per_watt": None,
            "by_status": {},
        }

    contract_value = pd.to_numeric(df["contract_value"], errors="coerce").fillna(0)
    net_price = pd.to_numeric(df["contract_net_price"], errors="coerce").fillna(0)
    kw = pd.to_numeric(df["kw_system"], errors="coerce").fillna(0)

    total_kw = float(kw.sum())
    avg_ppw = None
    if total_kw > 0:
        avg_ppw = round(float(net_price.sum()) / (total_kw * 1000), 4)

    by_status = df["status"].fillna("(none)").value_counts()
    return {
        "deal_count": int(len(df)),
        "total_contract_value": round(float(contract_value.sum()), 2),
        "total_kw": round(total_kw, 3),
        "avg_net_price_per_watt": avg_ppw,
        "by_status": {str(k): int(v) for k, v in by_status.items()},
    }

"""
Unit tests for deal queries, payload validation and KPIs.
"""

import pandas as pd
import pytest

from salesops.deals import (
    DEAL_COLUMNS,
    DealFilters,
    add_deal,
    build_deals_query,
    clean_deal_payload,
    compute_deal_kpis,
    fetch_deals,
    filter_options,
    update_deal,
)
from salesops.models import Visibility


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeResult:
    def __init__(self, value=None, row=None, rowcount=1):
        self._value = value
        self._row = row
        self.rowcount = rowcount

    def scalar(self):
        return self._value

    def mappings(self):
        return self

    def first(self):
        return self._row


class FakeConn:
    def __init__(self, engine):
        self._engine = engine

    def execute(self, sql, params=None):
        self._engine.executed.append((str(sql), params))
        if str(sql).startswith("SELECT"):
            return FakeResult(row=self._engine.stored)
        return FakeResult(value=self._engine.new_id, rowcount=self._engine.rowcount)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeEngine:
    """Mimic engine.begin(); connect() must never be reached in these tests."""
    def __init__(self, new_id=42, stored=None, rowcount=1):
        self.new_id = new_id
        self.stored = stored
        self.rowcount = rowcount
        self.executed = []

    def begin(self):
        return FakeConn(self)

    def connect(self):
        raise AssertionError("no query expected")


def stored_deal(**values):
    row = {c: None for c in DEAL_COLUMNS}
    row.update(id=5, sales_rep="Sam", customer_name="Smith", kw_system=8, status="Pending")
    row.update(values)
    return row


def sample_deals():
    return pd.DataFrame({
        "sales_rep": ["Sam", "Alex", "Sam", "Zoe"],
        "call_center_appointment_setter": ["Kim", None, "Kim", "Ray"],
        "company": ["SunCo", "SunCo", "Bright", None],
        "status": ["Closed", "Pending", None, "Closed"],
        "contract_value": [30000, 20000, None, 10000],
        "contract_net_price": [24000, 16000, 8000, 8000],
        "kw_system": [8, 6, 2, 4],
    })


# ── Tests: build_deals_query ─────────────────────────────────────────

def test_empty_visibility_issues_no_query():
    assert build_deals_query(Visibility.empty(), DealFilters()) is None


def test_unrestricted_has_no_owner_predicate():
    stmt, params = build_deals_query(Visibility.unrestricted(), DealFilters())
    assert "sales_rep IN" not in str(stmt)
    assert params == {"limit": 5000}


def test_named_visibility_restricts_owner():
    stmt, params = build_deals_query(Visibility.of(["Sam", "Alex"]), DealFilters())
    assert "sales_rep IN" in str(stmt)
    assert params["sales_reps"] == ["Sam", "Alex"]


def test_picked_reps_are_intersected_with_visibility():
    _, params = build_deals_query(Visibility.of(["Sam", "Alex"]), DealFilters(sales_reps=["Alex", "Zoe"]))
    assert params["sales_reps"] == ["Alex"]


def test_picked_reps_outside_visibility_issue_no_query():
    assert build_deals_query(Visibility.of(["Sam"]), DealFilters(sales_reps=["Zoe"])) is None


def test_other_filters_are_bound():
    filters = DealFilters(
        start_date="2024-01-01", end_date="2024-12-31", cc_setters=["Kim"],
        installers=["SunCo"], statuses=["Closed"], customer_q="  SMITH ",
    )
    stmt, params = build_deals_query(Visibility.unrestricted(), filters, limit=10)
    sql = str(stmt)
    assert "date_closed >= :start_date" in sql
    assert "ORDER BY date_closed DESC" in sql
    assert params["customer_q"] == "%smith%"
    assert params["installers"] == ["SunCo"]
    assert params["limit"] == 10


def test_fetch_deals_short_circuits_on_empty_visibility():
    df = fetch_deals(FakeEngine(), Visibility.empty(), DealFilters())
    assert df.empty
    assert list(df.columns) == DEAL_COLUMNS


# ── Tests: filter_options ────────────────────────────────────────────

def test_filter_options_limit_reps_to_visibility():
    opts = filter_options(sample_deals(), Visibility.of(["Sam"]))
    assert opts["sales_reps"] == ["Sam"]
    assert opts["cc_setters"] == ["Kim", "Ray"]
    assert opts["installers"] == ["Bright", "SunCo"]
    assert opts["statuses"] == ["Closed", "Pending"]


def test_filter_options_unrestricted():
    opts = filter_options(sample_deals(), Visibility.unrestricted())
    assert opts["sales_reps"] == ["Alex", "Sam", "Zoe"]


def test_filter_options_skip_missing_values():
    df = pd.DataFrame({
        "sales_rep": ["Sam", float("nan")], "call_center_appointment_setter": [float("nan"), None],
        "company": [None, "SunCo"], "status": ["Closed", float("nan")],
    })
    opts = filter_options(df, Visibility.unrestricted())
    assert opts["sales_reps"] == ["Sam"]
    assert opts["cc_setters"] == []
    assert "nan" not in opts["statuses"]



# ── Tests: payload / insert ──────────────────────────────────────────

def test_clean_payload_requires_customer_or_rep():
    with pytest.raises(ValueError, match="Customer Name or Sales Rep"):
        clean_deal_payload({"status": "Closed", "notes": " "})


def test_clean_payload_coerces_numbers_and_drops_blanks():
    clean = clean_deal_payload({"customer_name": " Smith ", "kw_system": "7.5", "notes": ""})
    assert clean == {"customer_name": "Smith", "kw_system": 7.5}


def test_clean_payload_rejects_unknown_fields():
    with pytest.raises(ValueError, match="Unknown deal fields: id"):
        clean_deal_payload({"id": 3, "customer_name": "Smith"})


def test_clean_payload_rejects_bad_number():
    with pytest.raises(ValueError, match="contract_value must be numeric"):
        clean_deal_payload({"sales_rep": "Sam", "contract_value": "lots"})


def test_add_deal_returns_new_id():
    engine = FakeEngine(new_id=7)
    assert add_deal(engine, {"sales_rep": "Sam", "contract_value": 1000}) == 7
    sql, params = engine.executed[0]
    assert sql.startswith("INSERT INTO deals (sales_rep, contract_value)")
    assert params == {"sales_rep": "Sam", "contract_value": 1000.0}


def test_add_deal_without_id_raises():
    with pytest.raises(RuntimeError, match="Insert failed"):
        add_deal(FakeEngine(new_id=None), {"sales_rep": "Sam"})


def test_clean_payload_partial_keeps_blanks_as_clears():
    assert clean_deal_payload({"notes": "  ", "kw_system": "6"}, partial=True) == {"notes": None, "kw_system": 6.0}


# ── Tests: update_deal ───────────────────────────────────────────────

def test_update_deal_writes_only_changed_fields():
    engine = FakeEngine(stored=stored_deal())
    changes = update_deal(engine, 5, {"kw_system": "8", "status": "Closed", "customer_name": "Smith "})
    assert changes == {"status": "Closed"}
    sql, params = engine.executed[-1]
    assert sql == "UPDATE deals SET status = :status WHERE id = :deal_id"
    assert params == {"status": "Closed", "deal_id": 5}


def test_update_deal_without_changes_issues_no_update():
    engine = FakeEngine(stored=stored_deal(contract_value=1000))
    assert update_deal(engine, 5, {"contract_value": "1000.0", "notes": ""}) == {}
    assert all(not sql.startswith("UPDATE") for sql, _ in engine.executed)


def test_update_deal_missing_row():
    with pytest.raises(LookupError, match="Deal 5 not found"):
        update_deal(FakeEngine(stored=None), 5, {"status": "Closed"})


def test_update_deal_hidden_by_visibility():
    engine = FakeEngine(stored=stored_deal(sales_rep="Alex"))
    with pytest.raises(LookupError):
        update_deal(engine, 5, {"status": "Closed"}, Visibility.of(["Sam"]))


def test_update_deal_cannot_reassign_outside_visibility():
    engine = FakeEngine(stored=stored_deal())
    with pytest.raises(PermissionError, match="Alex"):
        update_deal(engine, 5, {"sales_rep": "Alex"}, Visibility.of(["Sam"]))


def test_update_deal_cannot_clear_both_owner_and_customer():
    engine = FakeEngine(stored=stored_deal())
    with pytest.raises(ValueError, match="Customer Name or Sales Rep"):
        update_deal(engine, 5, {"sales_rep": "", "customer_name": None})


def test_update_deal_reports_unwritten_row():
    engine = FakeEngine(stored=stored_deal(), rowcount=0)
    with pytest.raises(RuntimeError, match="Save failed"):
        update_deal(engine, 5, {"status": "Closed"})



# ── Tests: compute_deal_kpis ─────────────────────────────────────────

def test_kpis_empty_frame():
    kpis = compute_deal_kpis(pd.DataFrame(columns=DEAL_COLUMNS))
    assert kpis["deal_count"] == 0
    assert kpis["avg_net_price_per_watt"] is None


def test_kpis_totals():
    kpis = compute_deal_kpis(sample_deals())
    assert kpis["deal_count"] == 4
    assert kpis["total_contract_value"] == 60000.0
    assert kpis["total_kw"] == 20.0
    assert kpis["avg_net_price_per_watt"] == 2.8
    assert kpis["by_status"] == {"Closed": 2, "Pending": 1, "(none)": 1}

"""
Interactive CLI for the Sales Ops Portal.
Switch identities and browse deals with the resolved data scope applied.
"""

import asyncio

from salesops.database import init_engine
from salesops.deals import DealFilters, compute_deal_kpis, fetch_deals
from salesops.directory import Directories
from salesops.models import AuthorizationState
from salesops.org_chart import PositionCatalog
from salesops.rbac import ScopeResolver, has_module

PREVIEW_ROWS = 20
PREVIEW_COLUMNS = ["date_closed", "customer_name", "sales_rep", "company", "status", "contract_value"]

HELP = """Commands:
  login <email>     switch identity
  logout            drop the current identity
  access            show the resolved access
  deals [customer]  list visible deals, optionally filtered by customer name
  positions         show the org chart positions
  quit"""


def describe(state: AuthorizationState) -> str:
    if state.is_loading:
        return "resolving..."
    if state.status == "failed":
        return f"ERROR: could not determine access ({state.error})"
    vis = state.visibility
    if vis.is_unrestricted:
        who = "all sales reps"
    elif vis.is_empty:
        who = "nothing"
    else:
        who = ", ".join(vis.names)
    modules = ", ".join(state.effective_modules) or "(none)"
    return f"status={state.status} scope={state.effective_scope.value} modules={modules} sees={who}"


async def run(engine) -> None:
    resolver = ScopeResolver(Directories.from_engine(engine))
    resolver.subscribe(lambda s: None if s.is_loading else print(f"[scope] {describe(s)}"))
    resolver.on_identity_change(None, True)

    # ── Login ────────────────────────────────────────────────────────
    try:
        email = (await asyncio.to_thread(input, "Enter your email (or 'quit'): ")).strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not email or email.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    resolver.on_identity_change(email, False)
    await resolver.wait()

    # ── REPL ─────────────────────────────────────────────────────────
    print(HELP)
    while True:
        try:
            line = (await asyncio.to_thread(input, "\n> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not line:
            continue
        cmd, _, arg = line.partition(" ")
        cmd = cmd.lower()
        arg = arg.strip()

        if cmd in {"quit", "exit"}:
            print("Goodbye.")
            break

        if cmd == "login":
            if not arg:
                print("Usage: login <email>")
                continue
            resolver.on_identity_change(arg, False)
            await resolver.wait()
        elif cmd == "logout":
            resolver.on_identity_change(None, False)
        elif cmd == "access":
            print(describe(await resolver.wait()))
        elif cmd == "deals":
            state = await resolver.wait()
            if state.status == "failed":
                print(describe(state))
                continue
            if not has_module(state, "sales"):
                print("No access to sales.")
                continue
            try:
                df = fetch_deals(engine, state.visibility, DealFilters(customer_q=arg))
            except Exception as e:
                print("\n[DB ERROR] Database error while running the query.")
                print("Details:", e)
                continue
            if df.empty:
                print("(no deals)")
                continue
            print(df[PREVIEW_COLUMNS].head(PREVIEW_ROWS).to_string(index=False))
            kpis = compute_deal_kpis(df)
            print(f"\n{kpis['deal_count']} deals, contract value {kpis['total_contract_value']:,.2f}, "
                  f"{kpis['total_kw']} kW")
        elif cmd == "positions":
            state = await resolver.wait()
            if not has_module(state, "org_chart"):
                print("No access to org chart.")
                continue
            catalog = await PositionCatalog(engine).load()
            for dept in catalog.departments:
                print(f"{dept}: {', '.join(catalog.positions_by_dept.get(dept, []))}")
        else:
            print(HELP)


def main():
    print("=== Sales Ops Portal: scoped deal browser ===\n")
    engine = init_engine()
    asyncio.run(run(engine))


if __name__ == "__main__":
    main()

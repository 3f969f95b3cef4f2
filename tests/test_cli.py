"""
CLI tests – startup login prompt and the access command.
"""

import asyncio
from types import SimpleNamespace

import salesops.cli as cli
from salesops.directory import Directories
from salesops.models import DataScope, PortalUserRecord, RoleRecord


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakePortalUsers:
    def __init__(self, users):
        self.users = {u.email: u for u in users}
        self.calls = []

    async def get_by_identity(self, identity):
        self.calls.append(identity)
        return self.users.get(identity)


class FakeRoles:
    async def get(self, role_id):
        return RoleRecord(id="R1", name="Rep", allowed_modules=("sales",), data_scope=DataScope.OWN)


class FakeEmployees:
    async def get_full_name(self, employee_id):
        return None

    async def list_active_reports(self, manager_id):
        return []


REP = PortalUserRecord(
    id="pu-1", email="rep@example.com", display_name="Sam", role_id="R1",
    linked_name="Sam", linked_employee_id=None, module_overrides=None,
    data_scope_override=None, is_active=True,
)


def run_cli(monkeypatch, answers):
    users = FakePortalUsers([REP])
    dirs = Directories(users, FakeRoles(), FakeEmployees())
    monkeypatch.setattr(cli, "Directories", SimpleNamespace(from_engine=lambda engine: dirs))
    replies = iter(answers)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(replies))
    asyncio.run(cli.run(engine=None))
    return users


# ── Tests ────────────────────────────────────────────────────────────

def test_startup_prompt_resolves_entered_email(monkeypatch, capsys):
    users = run_cli(monkeypatch, ["rep@example.com", "access", "quit"])
    out = capsys.readouterr().out
    assert users.calls[0] == "rep@example.com"
    assert "scope=own" in out
    assert "sees=Sam" in out
    assert "Goodbye." in out


def test_quit_at_startup_prompt_skips_lookup(monkeypatch, capsys):
    users = run_cli(monkeypatch, ["quit"])
    assert users.calls == []
    out = capsys.readouterr().out
    assert "Goodbye." in out
    assert "Commands:" not in out


def test_eof_at_startup_prompt_exits(monkeypatch, capsys):
    def no_input(prompt=""):
        raise EOFError

    monkeypatch.setattr(cli, "Directories", SimpleNamespace(
        from_engine=lambda engine: Directories(FakePortalUsers([]), FakeRoles(), FakeEmployees())
    ))
    monkeypatch.setattr("builtins.input", no_input)
    asyncio.run(cli.run(engine=None))
    assert "Exiting." in capsys.readouterr().out

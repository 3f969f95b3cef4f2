"""
Role-Based Access Control – resolving an identity into modules and a data scope.

resolve_authorization() is one resolution pass. ScopeResolver owns the
published state and runs one pass per identity epoch, discarding any pass
that finishes after a newer identity arrived.
"""

import asyncio
import sys
import traceback
from typing import Callable, List, Optional, Tuple

from salesops.directory import Directories
from salesops.errors import DirectoryError, StaleResolution
from salesops.models import (
    AuthorizationState,
    DataScope,
    PortalUserRecord,
    ResolvedAuthorization,
    RoleRecord,
    Visibility,
)


# ── Precedence table ─────────────────────────────────────────────────
# Each effective value takes the first source that is not None.

SCOPE_PRECEDENCE = (
    ("portal_user.data_scope_override", lambda pu, role: pu.data_scope_override),
    ("role.data_scope", lambda pu, role: role.data_scope if role else None),
    ("fallback", lambda pu, role: DataScope.NONE),
)

MODULE_PRECEDENCE = (
    ("portal_user.module_overrides", lambda pu, role: pu.module_overrides),
    ("role.allowed_modules", lambda pu, role: role.allowed_modules if role else None),
    ("fallback", lambda pu, role: ()),
)


def _first_defined(table, portal_user: PortalUserRecord, role: Optional[RoleRecord]):
    for _source, pick in table:
        value = pick(portal_user, role)
        if value is not None:
            return value
    raise AssertionError("precedence table has no fallback")


def effective_values(
    portal_user: PortalUserRecord, role: Optional[RoleRecord]
) -> Tuple[DataScope, Tuple[str, ...]]:
    """Apply the override-first precedence tables."""
    scope = _first_defined(SCOPE_PRECEDENCE, portal_user, role)
    modules = tuple(_first_defined(MODULE_PRECEDENCE, portal_user, role))
    return scope, modules


# ── Epoch token ──────────────────────────────────────────────────────

class EpochToken:
    """Captured at the start of a pass; goes stale once a newer epoch begins."""

    def __init__(self, epoch: int, current: Callable[[], int]):
        self.epoch = epoch
        self._current = current

    @property
    def is_current(self) -> bool:
        return self._current() == self.epoch

    def check(self) -> None:
        if not self.is_current:
            raise StaleResolution(f"epoch {self.epoch} superseded by {self._current()}")


class _AlwaysCurrent:
    epoch = 0
    is_current = True

    def check(self) -> None:
        return None


# ── One resolution pass ──────────────────────────────────────────────

async def _resolve_own_name(
    portal_user: PortalUserRecord, directories: Directories, token
) -> Optional[str]:
    own_name = None
    if portal_user.linked_employee_id:
        own_name = await directories.employees.get_full_name(portal_user.linked_employee_id)
        token.check()
        if own_name and portal_user.linked_name and own_name != portal_user.linked_name:
            print(
                f"[WARN] portal user {portal_user.id}: employee name '{own_name}' "
                f"differs from linked_name '{portal_user.linked_name}'; using the employee name.",
                file=sys.stderr,
            )
    if not own_name:
        own_name = portal_user.linked_name
    return own_name or None


async def resolve_authorization(
    identity: str, directories: Directories, token=None
) -> ResolvedAuthorization:
    """
    Resolve *identity* into a ResolvedAuthorization.

    Returns the Unauthorized result when no portal user matches. Directory
    failures propagate as DirectoryError. When *token* goes stale during a
    suspension point, StaleResolution is raised and nothing is returned.
    """
    token = token or _AlwaysCurrent()

    portal_user = await directories.portal_users.get_by_identity(identity)
    token.check()
    if portal_user is None:
        return ResolvedAuthorization.unauthorized()

    role = None
    if portal_user.role_id:
        role = await directories.roles.get(portal_user.role_id)
        token.check()

    scope, modules = effective_values(portal_user, role)

    def done(visibility: Visibility) -> ResolvedAuthorization:
        return ResolvedAuthorization(scope, modules, visibility, portal_user, role)

    if scope == DataScope.ALL:
        return done(Visibility.unrestricted())
    if scope == DataScope.NONE:
        return done(Visibility.empty())

    own_name = await _resolve_own_name(portal_user, directories, token)
    if not own_name:
        return done(Visibility.empty())

    if scope == DataScope.OWN:
        return done(Visibility.of([own_name]))

    names: List[str] = [own_name]
    if portal_user.linked_employee_id:
        reports = await directories.employees.list_active_reports(portal_user.linked_employee_id)
        token.check()
        names.extend(r.full_name for r in reports)
    return done(Visibility.of(names))


# ── Epoch-guarded resolver ───────────────────────────────────────────

class ScopeResolver:
    """
    Holds the published AuthorizationState for one session.

    Feed it identity changes with on_identity_change(); consumers read
    .state or subscribe() for every publish. Must be driven from a running
    event loop.
    """

    def __init__(self, directories: Directories):
        self._directories = directories
        self._epoch = 0
        self._task: Optional[asyncio.Task] = None
        self._state = AuthorizationState.loading()
        self._subscribers: List[Callable[[AuthorizationState], None]] = []

    @property
    def state(self) -> AuthorizationState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    def subscribe(self, callback: Callable[[AuthorizationState], None]) -> Callable[[], None]:
        """Register *callback* for every publish; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, token: EpochToken, state: AuthorizationState) -> None:
        token.check()
        self._state = state
        for callback in list(self._subscribers):
            callback(state)

    def on_identity_change(self, identity: Optional[str], is_loading: bool) -> Optional[asyncio.Task]:
        """
        Start a new epoch for *identity*.

        Returns the task running the resolution pass, or None when the
        outcome is known without a lookup (provider loading, or no identity).
        """
        self._epoch += 1
        token = EpochToken(self._epoch, lambda: self._epoch)

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        self._publish(token, AuthorizationState.loading())
        if is_loading:
            return None
        if not identity:
            self._publish(token, AuthorizationState.from_authorization(ResolvedAuthorization.unauthorized()))
            return None

        self._task = asyncio.get_running_loop().create_task(self._run(identity, token))
        return self._task

    async def _run(self, identity: str, token: EpochToken) -> None:
        try:
            auth = await resolve_authorization(identity, self._directories, token)
            self._publish(token, AuthorizationState.from_authorization(auth))
        except StaleResolution:
            print(f"[scope] discarded stale resolution for epoch {token.epoch}")
        except DirectoryError as e:
            if token.is_current:
                print(f"[ERROR] scope resolution failed for {identity}: {e}", file=sys.stderr)
                self._publish(token, AuthorizationState.failed(e))
        except Exception as e:
            if token.is_current:
                print(f"[ERROR] unexpected error resolving scope for {identity}: {e}", file=sys.stderr)
                traceback.print_exc()
                self._publish(token, AuthorizationState.failed(e))

    async def wait(self) -> AuthorizationState:
        """Wait for the live pass (if any) and return the published state."""
        # A pass may be superseded while we wait; follow the newest one.
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self._state


# ── Module gate ──────────────────────────────────────────────────────

def has_module(state: AuthorizationState, module: str) -> bool:
    """True only for a resolved state whose effective modules include *module*."""
    return state.status == "resolved" and module in state.effective_modules


def require_module(state: AuthorizationState, module: str) -> None:
    if not has_module(state, module):
        raise PermissionError(f"Forbidden: {module} access required")

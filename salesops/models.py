"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple


class DataScope(str, Enum):
    """Breadth of deal records an identity may see."""
    ALL = "all"
    OWN = "own"
    TEAM = "team"
    NONE = "none"


@dataclass(frozen=True)
class PortalUserRecord:
    """Row of the portal_users directory."""
    id: str
    email: str
    display_name: str
    role_id: Optional[str]
    linked_name: Optional[str]
    linked_employee_id: Optional[str]
    module_overrides: Optional[Tuple[str, ...]]   # None = inherit from role
    data_scope_override: Optional[DataScope]      # None = inherit from role
    is_active: bool


@dataclass(frozen=True)
class RoleRecord:
    """Row of the roles directory."""
    id: str
    name: str
    allowed_modules: Tuple[str, ...]
    data_scope: DataScope


@dataclass(frozen=True)
class EmployeeRecord:
    """Row of the employees directory."""
    id: str
    full_name: str
    manager_id: Optional[str]
    is_active: bool


@dataclass(frozen=True)
class Visibility:
    """
    Materialised owner-name filter.

    kind is "unrestricted" (no filter), "empty" (show nothing) or "names"
    (only owners listed in names). Build instances with the classmethods.
    """
    kind: str
    names: Tuple[str, ...] = ()

    @classmethod
    def unrestricted(cls) -> "Visibility":
        return cls("unrestricted")

    @classmethod
    def empty(cls) -> "Visibility":
        return cls("empty")

    @classmethod
    def of(cls, names: Iterable[str]) -> "Visibility":
        """Keep first-seen order, drop blanks and duplicates. No names means empty."""
        seen = []
        for name in names:
            name = (name or "").strip()
            if name and name not in seen:
                seen.append(name)
        if not seen:
            return cls.empty()
        return cls("names", tuple(seen))

    @property
    def is_unrestricted(self) -> bool:
        return self.kind == "unrestricted"

    @property
    def is_empty(self) -> bool:
        return self.kind == "empty"

    def allows(self, owner: Optional[str]) -> bool:
        if self.is_unrestricted:
            return True
        return owner is not None and owner in self.names

    def to_json(self):
        """None for unrestricted, a list of names otherwise ([] = nothing)."""
        if self.is_unrestricted:
            return None
        return list(self.names)


@dataclass(frozen=True)
class ResolvedAuthorization:
    """Derived authorization for one identity; recomputed on every identity change."""
    effective_scope: DataScope
    effective_modules: Tuple[str, ...]
    visibility: Visibility
    portal_user: Optional[PortalUserRecord] = None
    role: Optional[RoleRecord] = None

    @classmethod
    def unauthorized(cls) -> "ResolvedAuthorization":
        return cls(DataScope.NONE, (), Visibility.empty())


@dataclass(frozen=True)
class AuthorizationState:
    """What consumers read: the latest published outcome of the scope resolver."""
    status: str                                   # "loading", "resolved", "unauthorized" or "failed"
    authorization: Optional[ResolvedAuthorization] = None
    error: Optional[Exception] = field(default=None, compare=False)

    @classmethod
    def loading(cls) -> "AuthorizationState":
        return cls("loading")

    @classmethod
    def failed(cls, error: Exception) -> "AuthorizationState":
        return cls("failed", error=error)

    @classmethod
    def from_authorization(cls, auth: ResolvedAuthorization) -> "AuthorizationState":
        status = "unauthorized" if auth.portal_user is None else "resolved"
        return cls(status, auth)

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"

    @property
    def effective_scope(self) -> DataScope:
        if self.authorization is None:
            return DataScope.NONE
        return self.authorization.effective_scope

    @property
    def effective_modules(self) -> Tuple[str, ...]:
        if self.authorization is None:
            return ()
        return self.authorization.effective_modules

    @property
    def visibility(self) -> Visibility:
        # Loading and failed states render nothing.
        if self.authorization is None:
            return Visibility.empty()
        return self.authorization.visibility

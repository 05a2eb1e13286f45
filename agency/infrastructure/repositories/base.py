from __future__ import annotations

from dataclasses import dataclass


class OwnerScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without the owning user id."""


@dataclass(frozen=True)
class LoadScope:
    kind: str
    admin_id: str | None = None

    @classmethod
    def all(cls) -> "LoadScope":
        return cls(kind="all")

    @classmethod
    def owned_by_admin(cls, admin_id: str | None) -> "LoadScope":
        normalized = str(admin_id or "").strip()
        if not normalized:
            raise OwnerScopeRequiredError("admin_id is required for an owned_by_admin scope")
        return cls(kind="owned_by_admin", admin_id=normalized)

    @property
    def privileged(self) -> bool:
        return self.kind == "all"


@dataclass(frozen=True)
class PersistResult:
    entity_id: str
    degraded: bool = False
    warning: str | None = None


class BaseRepository:
    def __init__(self, *, owner_id: str | None = None) -> None:
        scope = str(owner_id or "").strip()
        if not scope:
            raise OwnerScopeRequiredError("owner_id is required for repository access")
        self.owner_id = scope

"""Admin user directory: residents, security staff and admins in one view."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from society_engine.core.config import CollectionConfig
from society_engine.core.enums import UserRole
from society_engine.core.interfaces import IDocumentStore
from society_engine.core.models import UserProfile
from society_engine.repository.resource_repository import ResourceRepository

from .stats import count_by, count_by_partition
from .view import AggregationView, MergedView, repository_source


class DirectoryStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    by_role: dict[str, int]
    by_partition: dict[str, int]


def directory_stats(view: MergedView[UserProfile]) -> DirectoryStats:
    by_role = {str(role): n for role, n in count_by(view, lambda u: u.role.value).items()}
    return DirectoryStats(
        total=len(view),
        by_role=dict(sorted(by_role.items())),
        by_partition=count_by_partition(view),
    )


def sorted_users(view: MergedView[UserProfile]) -> list[UserProfile]:
    """Directory listing order: by name, then house."""
    return sorted(view, key=lambda u: (u.name.lower(), u.house_no or ""))


def user_repositories(
    store: IDocumentStore,
    collections: CollectionConfig | None = None,
) -> dict[str, ResourceRepository[UserProfile]]:
    names = collections or CollectionConfig()
    return {
        UserRole.RESIDENT.value: ResourceRepository(store, names.residents, UserProfile),
        UserRole.SECURITY.value: ResourceRepository(store, names.security_staff, UserProfile),
        UserRole.ADMIN.value: ResourceRepository(store, names.admins, UserProfile),
    }


def build_user_directory(
    store: IDocumentStore,
    collections: CollectionConfig | None = None,
) -> AggregationView[UserProfile, DirectoryStats]:
    """One partition per role collection, keyed by role."""
    sources: dict[str, Any] = {
        role: repository_source(repo)
        for role, repo in user_repositories(store, collections).items()
    }
    return AggregationView(sources, derive=directory_stats)

"""
Pydantic models for engine configuration and queue identities.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GroupVersionResource(BaseModel):
    """Type discriminator for a class of objects, independent of schema."""
    model_config = ConfigDict(frozen=True)

    group: str = ""
    version: str = Field(..., min_length=1)
    resource: str = Field(..., min_length=1)

    @classmethod
    def parse(cls, value: str) -> "GroupVersionResource":
        """
        Parse ``resource.version.group`` (e.g. ``gateways.v1beta1.gateway.networking.k8s.io``).
        Core resources omit the group: ``secrets.v1``.
        """
        parts = value.strip().split(".", 2)
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValueError(f"invalid resource '{value}': expected resource.version[.group]")
        group = parts[2] if len(parts) == 3 else ""
        return cls(group=group, version=parts[1], resource=parts[0])

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return ".".join(p for p in (self.resource, self.version, self.group) if p)


NAMESPACES_GVR = GroupVersionResource(version="v1", resource="namespaces")


class WorkItem(BaseModel):
    """One queued unit of work: a resource type plus a ``namespace/name`` key."""
    model_config = ConfigDict(frozen=True)

    gvr: GroupVersionResource
    key: str

    def __str__(self) -> str:
        return f"{self.gvr} {self.key}"


class SyncConfig(BaseModel):
    """Validated engine configuration for one sync target."""

    target: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$",
        description="Identity of this downstream cluster; suffix of every coordination key",
    )
    resources: List[GroupVersionResource] = []
    never_synced: List[str] = ["pods"]
    upstream_namespaces: List[str] = Field(default=["mctc-tenant"], min_length=1)
    downstream_namespace: str = Field(default="mctc-downstream", min_length=1)
    mutators: List[str] = ["jsonpatch", "annotation-cleaner"]
    workers: int = Field(default=8, ge=1)
    max_retries: int = Field(default=5, ge=0)

    @field_validator("resources", mode="before")
    @classmethod
    def _parse_resources(cls, value):
        if isinstance(value, str):
            value = [v for v in value.split(",") if v.strip()]
        return [GroupVersionResource.parse(v) if isinstance(v, str) else v for v in value]

    def synced_resources(self) -> List[GroupVersionResource]:
        """Configured resource types minus the never-synced denylist."""
        return [
            gvr for gvr in self.resources
            if str(gvr) not in self.never_synced and gvr.resource not in self.never_synced
        ]

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        return cls(
            target=settings.SYNC_TARGET,
            resources=settings.SYNCED_RESOURCES,
            never_synced=_split(settings.NEVER_SYNCED_RESOURCES),
            upstream_namespaces=_split(settings.CONTROL_PLANE_NAMESPACES),
            downstream_namespace=settings.DOWNSTREAM_NAMESPACE,
            mutators=_split(settings.MUTATORS),
            workers=settings.NUM_WORKERS,
            max_retries=settings.MAX_RETRIES,
        )


def _split(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]

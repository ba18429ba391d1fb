"""
Metadata accessors for schema-less resource objects.

Objects are plain JSON documents (dicts) as returned by the dynamic client.
Every helper here tolerates missing ``metadata`` / ``annotations`` /
``finalizers`` so callers never have to pre-populate them.

Also holds the annotation wire contract shared with every other
implementation of the control plane. Keys must stay bit-exact.
"""

import copy
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Wire contract
# ---------------------------------------------------------------------------
SYNC_ANNOTATION_PREFIX = "mctc-sync-agent/"
SYNC_ANNOTATION_WILDCARD = "all"
PATCH_ANNOTATION_PREFIX = "mctc-syncer-patch/"
STATUS_ANNOTATION_PREFIX = "mctc-status-syncer-status-"
FINALIZER_PREFIX = "mctc-spec-syncer-finalizer/"
DELETION_ANNOTATION_PREFIX = "mctc-spec-syncer-deletion-timestamp-"
LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

# Set on every downstream object written by the spec syncer; the status
# direction watches for it because sync annotations never cross the boundary.
SYNCED_TARGET_LABEL = "mctc-syncer/target"
# Upstream namespace the downstream copy was rendered from; status is routed
# back there.
UPSTREAM_NAMESPACE_LABEL = "mctc-syncer/upstream-namespace"

# Fields owned by the API server of the store they live in. Never copied
# from one cluster to another.
CONTROL_METADATA_FIELDS = (
    "uid",
    "resourceVersion",
    "managedFields",
    "ownerReferences",
    "finalizers",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "creationTimestamp",
    "generation",
    "selfLink",
)


def sync_annotation(target: str) -> str:
    return SYNC_ANNOTATION_PREFIX + target


def patch_annotation(target: str) -> str:
    return PATCH_ANNOTATION_PREFIX + target


def status_annotation(target: str) -> str:
    return STATUS_ANNOTATION_PREFIX + target


def deletion_annotation(target: str) -> str:
    return DELETION_ANNOTATION_PREFIX + target


def finalizer_name(target: str) -> str:
    return FINALIZER_PREFIX + target


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------

def get_metadata(obj: dict) -> dict:
    """Return the metadata mapping. Raises TypeError if obj has none usable."""
    if not isinstance(obj, dict):
        raise TypeError(f"object of type {type(obj).__name__} is not a resource document")
    meta = obj.get("metadata")
    if not isinstance(meta, dict) or not meta.get("name"):
        raise TypeError("object has no metadata.name")
    return meta


def _meta(obj: dict) -> dict:
    return obj.setdefault("metadata", {})


def get_name(obj: dict) -> str:
    return obj.get("metadata", {}).get("name", "")


def get_namespace(obj: dict) -> str:
    return obj.get("metadata", {}).get("namespace", "") or ""


def meta_namespace_key(obj: dict) -> str:
    """``namespace/name`` for namespaced objects, ``name`` otherwise."""
    meta = get_metadata(obj)
    namespace = meta.get("namespace")
    if namespace:
        return f"{namespace}/{meta['name']}"
    return meta["name"]


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


def deep_copy(obj: dict) -> dict:
    return copy.deepcopy(obj)


# --- annotations ---

def get_annotations(obj: dict) -> dict:
    return obj.get("metadata", {}).get("annotations") or {}


def get_annotation(obj: dict, key: str) -> str:
    return get_annotations(obj).get(key, "")


def has_annotation(obj: dict, key: str) -> bool:
    return key in get_annotations(obj)


def add_annotation(obj: dict, key: str, value: str) -> None:
    meta = _meta(obj)
    if meta.get("annotations") is None:
        meta["annotations"] = {}
    meta["annotations"][key] = value


def remove_annotation(obj: dict, key: str) -> None:
    annotations = obj.get("metadata", {}).get("annotations")
    if annotations:
        annotations.pop(key, None)


def remove_annotations_by_prefix(obj: dict, prefix: str) -> None:
    annotations = obj.get("metadata", {}).get("annotations")
    if not annotations:
        return
    for key in [k for k in annotations if k.startswith(prefix)]:
        del annotations[key]


# --- labels ---

def get_labels(obj: dict) -> dict:
    return obj.get("metadata", {}).get("labels") or {}


def get_label(obj: dict, key: str) -> str:
    return get_labels(obj).get(key, "")


def add_label(obj: dict, key: str, value: str) -> None:
    meta = _meta(obj)
    if meta.get("labels") is None:
        meta["labels"] = {}
    meta["labels"][key] = value


# --- finalizers ---

def get_finalizers(obj: dict) -> list:
    return list(obj.get("metadata", {}).get("finalizers") or [])


def has_finalizer(obj: dict, finalizer: str) -> bool:
    return finalizer in get_finalizers(obj)


def add_finalizer(obj: dict, finalizer: str) -> None:
    if has_finalizer(obj, finalizer):
        return
    _meta(obj)["finalizers"] = get_finalizers(obj) + [finalizer]


def remove_finalizer(obj: dict, finalizer: str) -> None:
    remaining = [f for f in get_finalizers(obj) if f != finalizer]
    meta = _meta(obj)
    if remaining:
        meta["finalizers"] = remaining
    else:
        meta.pop("finalizers", None)


def is_being_deleted(obj: dict) -> bool:
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


def strip_control_metadata(obj: dict, namespace: Optional[str] = None) -> dict:
    """Drop server-owned metadata and status so the document can be applied elsewhere."""
    meta = _meta(obj)
    for field in CONTROL_METADATA_FIELDS:
        meta.pop(field, None)
    if namespace is not None:
        meta["namespace"] = namespace
    obj.pop("status", None)
    return obj


def nested_field(obj: dict, *path: str) -> tuple[Any, bool]:
    """Walk ``path`` through nested dicts. Returns (value, found)."""
    current: Any = obj
    for part in path:
        if not isinstance(current, dict) or part not in current:
            return None, False
        current = current[part]
    return current, True


def is_sync_eligible(obj: dict, target: str) -> bool:
    """True when the object is annotated for ``target`` or for every target."""
    if get_annotation(obj, sync_annotation(target)) == "true":
        return True
    return get_annotation(obj, sync_annotation(SYNC_ANNOTATION_WILDCARD)) == "true"

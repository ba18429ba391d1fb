"""
Mutator pipeline: per-target transforms applied to a copy of the upstream
object right before it is written downstream.

Mutators run in the configured order and edit the document in place. The
first failure aborts the whole pass, so nothing is written for that key.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Protocol

import jsonpatch
import jsonpointer

from . import metadata
from .errors import MalformedAnnotationError, MutatorError, PermanentSyncError

logger = logging.getLogger("sync_agent.mutators")


@dataclass
class MutatorConfig:
    target: str
    logger: logging.Logger = field(default=logger)


class Mutator(Protocol):
    name: str

    def mutate(self, cfg: MutatorConfig, obj: dict) -> None: ...


def run_mutators(mutators: Iterable[Mutator], cfg: MutatorConfig, obj: dict) -> None:
    for mutator in mutators:
        try:
            mutator.mutate(cfg, obj)
        except PermanentSyncError:
            raise
        except Exception as e:
            raise MutatorError(mutator.name, str(e)) from e


# ---------------------------------------------------------------------------
# JSON Patch
# ---------------------------------------------------------------------------

class JSONPatchMutator:
    """Applies the RFC6902 patch stored in the target's patch annotation."""

    name = "JSON Patch"

    def mutate(self, cfg: MutatorConfig, obj: dict) -> None:
        key = metadata.patch_annotation(cfg.target)
        raw = metadata.get_annotation(obj, key)
        if not raw:
            return

        cfg.logger.debug(f"applying patch from {key} to {metadata.get_namespace(obj)}/{metadata.get_name(obj)}")
        try:
            patch = jsonpatch.JsonPatch.from_string(raw)
        except (ValueError, TypeError, jsonpatch.InvalidJsonPatch) as e:
            raise MalformedAnnotationError(key, f"cannot decode patch: {e}") from e

        try:
            patched = patch.apply(obj)
        except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException, KeyError, IndexError, TypeError) as e:
            raise MalformedAnnotationError(key, f"cannot apply patch: {e}") from e

        if not isinstance(patched, dict):
            raise MalformedAnnotationError(key, "patch replaced the whole document with a non-object")
        obj.clear()
        obj.update(patched)


# ---------------------------------------------------------------------------
# Annotation cleaner
# ---------------------------------------------------------------------------

CONTROL_ANNOTATION_PREFIXES = (
    metadata.PATCH_ANNOTATION_PREFIX,
    metadata.SYNC_ANNOTATION_PREFIX,
    metadata.STATUS_ANNOTATION_PREFIX,
    metadata.LAST_APPLIED_ANNOTATION,
)


class AnnotationCleaner:
    """Drops control-plane coordination annotations so they never reach the target."""

    name = "Annotation Cleaner"

    def mutate(self, cfg: MutatorConfig, obj: dict) -> None:
        for prefix in CONTROL_ANNOTATION_PREFIXES:
            metadata.remove_annotations_by_prefix(obj, prefix)
        meta = obj.get("metadata") or {}
        if "annotations" in meta and not meta["annotations"]:
            del meta["annotations"]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class MutatorRegistry:
    """Name -> factory map. Built once at startup and handed to the engine."""

    def __init__(self):
        self._factories: dict = {}

    def register(self, name: str, factory: Callable[[], Mutator]) -> None:
        if name in self._factories:
            raise ValueError(f"mutator '{name}' already registered")
        self._factories[name] = factory

    def names(self) -> List[str]:
        return list(self._factories)

    def build(self, names: Iterable[str]) -> List[Mutator]:
        """Instantiate the named mutators in the given order."""
        pipeline = []
        for name in names:
            factory = self._factories.get(name)
            if factory is None:
                raise ValueError(
                    f"unknown mutator '{name}' (known: {', '.join(self._factories) or 'none'})"
                )
            pipeline.append(factory())
        return pipeline


def default_registry() -> MutatorRegistry:
    registry = MutatorRegistry()
    registry.register("jsonpatch", JSONPatchMutator)
    registry.register("annotation-cleaner", AnnotationCleaner)
    return registry

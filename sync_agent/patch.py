"""
Producer-side helpers for the per-target patch annotation.

Controllers on the control plane describe how an object should differ on one
target by mutating a copy; the difference is stored as an RFC6902 document
that the JSON Patch mutator replays on that target only.

Public API for producer controllers; the engine itself only consumes the
annotation.
"""

import copy
import json
from typing import Callable, Optional

import jsonpatch

from . import metadata


def patch_for(mutation: Callable[[dict], None], original: dict) -> Optional[str]:
    """JSON Patch turning ``original`` into ``mutation(copy of original)``; None if equal."""
    updated = copy.deepcopy(original)
    mutation(updated)
    if updated == original:
        return None
    return json.dumps(jsonpatch.make_patch(original, updated).patch)


def set_patch_annotation(mutation: Callable[[dict], None], target: str, obj: dict) -> bool:
    """
    Store the patch produced by ``mutation`` on ``obj`` for ``target``.
    Returns False (and leaves obj alone) when the mutation changes nothing.
    """
    patch = patch_for(mutation, obj)
    if patch is None:
        return False
    metadata.add_annotation(obj, metadata.patch_annotation(target), patch)
    return True

import json

from sync_agent import metadata
from sync_agent.mutators import JSONPatchMutator, MutatorConfig
from sync_agent.patch import patch_for, set_patch_annotation

from conftest import make_object


def scale_to_three(obj):
    obj["spec"]["replicas"] = 3


def test_patch_for_unchanged_is_none():
    assert patch_for(lambda obj: None, make_object()) is None


def test_patch_for_describes_the_mutation():
    original = make_object()
    patch = json.loads(patch_for(scale_to_three, original))
    assert patch == [{"op": "replace", "path": "/spec/replicas", "value": 3}]
    assert original["spec"]["replicas"] == 1


def test_set_patch_annotation_round_trips_through_mutator():
    obj = make_object()
    assert set_patch_annotation(scale_to_three, "clusterA", obj) is True
    assert obj["spec"]["replicas"] == 1
    assert metadata.has_annotation(obj, "mctc-syncer-patch/clusterA")

    JSONPatchMutator().mutate(MutatorConfig(target="clusterA"), obj)
    assert obj["spec"]["replicas"] == 3


def test_set_patch_annotation_noop_leaves_object_alone():
    obj = make_object()
    assert set_patch_annotation(lambda o: None, "clusterA", obj) is False
    assert "annotations" not in obj["metadata"]

import pytest
from pydantic import ValidationError

from sync_agent.config import Settings
from sync_agent.models import GroupVersionResource, SyncConfig, WorkItem


def test_parse_gvr_with_group():
    gvr = GroupVersionResource.parse("gateways.v1beta1.gateway.networking.k8s.io")
    assert gvr.resource == "gateways"
    assert gvr.version == "v1beta1"
    assert gvr.group == "gateway.networking.k8s.io"
    assert gvr.api_version == "gateway.networking.k8s.io/v1beta1"
    assert str(gvr) == "gateways.v1beta1.gateway.networking.k8s.io"


def test_parse_core_gvr():
    gvr = GroupVersionResource.parse("secrets.v1")
    assert gvr == GroupVersionResource(version="v1", resource="secrets")
    assert gvr.api_version == "v1"
    assert str(gvr) == "secrets.v1"


@pytest.mark.parametrize("value", ["secrets", "", ".v1", "secrets."])
def test_parse_rejects_incomplete(value):
    with pytest.raises(ValueError):
        GroupVersionResource.parse(value)


def test_work_items_are_hashable_identities():
    gvr = GroupVersionResource.parse("secrets.v1")
    a = WorkItem(gvr=gvr, key="ns/a")
    assert a == WorkItem(gvr=GroupVersionResource.parse("secrets.v1"), key="ns/a")
    assert len({a, WorkItem(gvr=gvr, key="ns/a"), WorkItem(gvr=gvr, key="ns/b")}) == 2


def test_sync_config_parses_resources_and_applies_denylist():
    config = SyncConfig(
        target="clusterA",
        resources="deployments.v1.apps, pods.v1,secrets.v1",
        never_synced=["pods"],
    )
    assert [str(r) for r in config.synced_resources()] == ["deployments.v1.apps", "secrets.v1"]
    assert config.upstream_namespaces == ["mctc-tenant"]


@pytest.mark.parametrize("target", ["", "has space", "x" * 64, "-leading"])
def test_sync_config_rejects_invalid_target(target):
    with pytest.raises(ValidationError):
        SyncConfig(target=target)


def test_sync_config_rejects_bad_workers():
    with pytest.raises(ValidationError):
        SyncConfig(target="clusterA", workers=0)


def test_from_settings():
    settings = Settings(
        SYNC_TARGET="clusterB",
        SYNCED_RESOURCES="secrets.v1",
        CONTROL_PLANE_NAMESPACES="tenant-1,tenant-2",
        DOWNSTREAM_NAMESPACE="down",
        MUTATORS="annotation-cleaner",
        NUM_WORKERS=3,
        MAX_RETRIES=1,
    )
    config = SyncConfig.from_settings(settings)
    assert config.target == "clusterB"
    assert config.upstream_namespaces == ["tenant-1", "tenant-2"]
    assert config.downstream_namespace == "down"
    assert config.mutators == ["annotation-cleaner"]
    assert config.workers == 3
    assert config.max_retries == 1

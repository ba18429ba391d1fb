"""
Configuration module: all settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Sync target identity (this downstream cluster)
    SYNC_TARGET: str = os.environ.get("SYNC_TARGET", "")

    # Resource selection (comma separated resource.version.group strings)
    SYNCED_RESOURCES: str = os.environ.get("SYNCED_RESOURCES", "")
    NEVER_SYNCED_RESOURCES: str = os.environ.get("NEVER_SYNCED_RESOURCES", "pods")

    # Namespaces
    CONTROL_PLANE_NAMESPACES: str = os.environ.get("CONTROL_PLANE_NAMESPACES", "mctc-tenant")
    DOWNSTREAM_NAMESPACE: str = os.environ.get("DOWNSTREAM_NAMESPACE", "mctc-downstream")

    # Mutator pipeline, applied in order
    MUTATORS: str = os.environ.get("MUTATORS", "jsonpatch,annotation-cleaner")

    # Worker pools
    NUM_WORKERS: int = int(os.environ.get("NUM_WORKERS", "8"))
    MAX_RETRIES: int = int(os.environ.get("MAX_RETRIES", "5"))
    SHUTDOWN_TIMEOUT: int = int(os.environ.get("SHUTDOWN_TIMEOUT", "30"))

    # Kubernetes. Control plane needs its own kubeconfig; the local cluster
    # falls back to in-cluster config.
    CONTROL_PLANE_KUBECONFIG: str = os.environ.get("CONTROL_PLANE_KUBECONFIG", "")
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"

    # Observability
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "8080"))
    LIVENESS_ENDPOINT: str = os.environ.get("LIVENESS_ENDPOINT", "http://0.0.0.0:8081/healthz")


settings = Settings()

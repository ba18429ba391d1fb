"""
Sync Agent: host process

Runs as a kopf operator inside the downstream cluster:
  startup  -> build both cluster clients, the engine and the metrics server,
              then start the engine on its own thread
  cleanup  -> signal the engine and wait for in-flight items to finish
  probes   -> queue depths and engine liveness on the liveness endpoint

The engine is thread based and owns its watches, so kopf only provides the
process lifecycle here, not resource handlers.
"""

import logging
import threading

import kopf
from kubernetes import config as k8s_config
from prometheus_client import start_http_server

from .config import settings as env
from .engine import SyncEngine
from .models import SyncConfig
from .mutators import default_registry
from .services.kubernetes_service import DynamicResourceClient, load_api_client

logger = logging.getLogger("sync_agent.operator")


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def start_engine(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    # no kopf-managed resources, keep it from posting k8s events
    settings.posting.enabled = False

    # without its own kubeconfig the control plane would resolve to the local cluster
    if not env.CONTROL_PLANE_KUBECONFIG:
        raise kopf.PermanentError("CONTROL_PLANE_KUBECONFIG is not set")

    try:
        sync_config = SyncConfig.from_settings(env)
        engine = SyncEngine(
            sync_config,
            upstream=DynamicResourceClient(
                load_api_client(env.CONTROL_PLANE_KUBECONFIG), name="upstream"
            ),
            downstream=DynamicResourceClient(
                load_api_client(env.KUBECONFIG, in_cluster=env.IN_CLUSTER), name="downstream"
            ),
            registry=default_registry(),
            shutdown_timeout=env.SHUTDOWN_TIMEOUT,
        )
    except (ValueError, k8s_config.ConfigException) as e:
        raise kopf.PermanentError(f"Invalid sync agent configuration: {e}")

    if env.METRICS_PORT:
        start_http_server(env.METRICS_PORT)
        logger.info(f"Metrics exposed on :{env.METRICS_PORT}")

    stop = threading.Event()
    thread = threading.Thread(target=engine.run, args=(stop,), name="sync-engine", daemon=True)
    thread.start()

    memo.engine = engine
    memo.stop = stop
    memo.engine_thread = thread
    logger.info(
        f"Sync agent started (target={sync_config.target}, workers={sync_config.workers}, "
        f"max_retries={sync_config.max_retries})"
    )


@kopf.on.cleanup()
def stop_engine(memo: kopf.Memo, **kwargs):
    stop = memo.get("stop")
    if stop is None:
        return
    logger.info("Sync agent shutting down...")
    stop.set()
    thread = memo.get("engine_thread")
    if thread is not None:
        thread.join(env.SHUTDOWN_TIMEOUT)
        if thread.is_alive():
            logger.warning(f"Sync engine did not stop within {env.SHUTDOWN_TIMEOUT}s")


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

@kopf.on.probe(id="queue_depth")
def queue_depth(memo: kopf.Memo, **kwargs):
    engine = memo.get("engine")
    return engine.queue_depths() if engine else {}


@kopf.on.probe(id="engine_alive")
def engine_alive(memo: kopf.Memo, **kwargs):
    engine = memo.get("engine")
    return bool(engine and engine.is_alive())

"""
Sync engine: wires both directions together for one sync target.

  upstream informers   -> spec dispatcher   -> SpecSyncer   -> downstream
  downstream informers -> status dispatcher -> StatusSyncer -> upstream
"""

import logging
import threading
from typing import Dict, List, Optional

from .dispatcher import SyncDispatcher, annotation_eligibility, synced_label_eligibility
from .informer import InformerFactory
from .models import SyncConfig
from .mutators import MutatorRegistry, default_registry
from .services.kubernetes_service import ResourceClient
from .spec_syncer import SpecSyncer
from .status_syncer import StatusSyncer

logger = logging.getLogger("sync_agent.engine")


class SyncEngine:

    def __init__(self, config: SyncConfig, upstream: ResourceClient, downstream: ResourceClient,
                 registry: Optional[MutatorRegistry] = None, shutdown_timeout: Optional[float] = 30):
        self.config = config
        self.shutdown_timeout = shutdown_timeout
        registry = registry or default_registry()
        mutators = registry.build(config.mutators)
        resources = config.synced_resources()

        # a single upstream namespace can be watched directly; several need a cluster-wide watch
        upstream_scope = config.upstream_namespaces[0] if len(config.upstream_namespaces) == 1 else None
        self.upstream_informers = InformerFactory(upstream, namespace=upstream_scope)
        self.downstream_informers = InformerFactory(downstream, namespace=config.downstream_namespace)

        self.spec_syncer = SpecSyncer(config, upstream, downstream, mutators,
                                      shutdown_timeout=shutdown_timeout)
        self.status_syncer = StatusSyncer(config, upstream, downstream,
                                          shutdown_timeout=shutdown_timeout)

        self.spec_dispatcher = SyncDispatcher(
            "spec",
            config.target,
            self.upstream_informers,
            resources,
            config.upstream_namespaces,
            self.spec_syncer.add_to_queue,
            eligible=annotation_eligibility,
        )
        self.status_dispatcher = SyncDispatcher(
            "status",
            config.target,
            self.downstream_informers,
            resources,
            [config.downstream_namespace],
            self.status_syncer.add_to_queue,
            eligible=synced_label_eligibility,
        )
        self._threads: List[threading.Thread] = []
        logger.info(
            f"Sync engine for target {config.target}: "
            f"resources=[{', '.join(str(r) for r in resources)}] "
            f"upstream={config.upstream_namespaces} downstream={config.downstream_namespace} "
            f"mutators={[m.name for m in mutators]}"
        )

    def queue_depths(self) -> Dict[str, int]:
        return {
            self.spec_syncer.name: len(self.spec_syncer.queue),
            self.status_syncer.name: len(self.status_syncer.queue),
        }

    def is_alive(self) -> bool:
        return bool(self._threads) and all(t.is_alive() for t in self._threads)

    def run(self, stop: threading.Event) -> None:
        """Run both directions until ``stop`` is set, then wait for every component."""
        runnables = [
            ("spec-syncer", self.spec_syncer.run),
            ("status-syncer", self.status_syncer.run),
            ("spec-dispatcher", self.spec_dispatcher.run),
            ("status-dispatcher", self.status_dispatcher.run),
        ]
        self._threads = [
            threading.Thread(target=fn, args=(stop,), name=name, daemon=True)
            for name, fn in runnables
        ]
        for t in self._threads:
            t.start()
        logger.info(f"Sync engine started for target {self.config.target}")

        stop.wait()
        for t in self._threads:
            t.join(self.shutdown_timeout)
        logger.info("Sync engine stopped")

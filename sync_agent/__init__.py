"""
Sync Agent: generic resource synchronization engine for multi-cluster control planes.

Runs inside a downstream cluster and:
  - replicates annotated resources from the control plane (upstream) into this cluster
  - mirrors the downstream status back onto the upstream object as an annotation
  - gates upstream deletion on downstream cleanup with a per-target finalizer

Resource types are opaque: objects travel as plain JSON documents through
the dynamic Kubernetes client, so no schema is compiled in.
"""

__version__ = "0.3.0"

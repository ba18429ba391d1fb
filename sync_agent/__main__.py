"""
Entrypoint: ``python -m sync_agent``.
"""

import logging

import kopf

from .config import settings

# --- Logging ---
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sync_agent")

from . import operator  # noqa: E402,F401  registers the kopf handlers


def main():
    logger.info(f"Sync agent starting for target '{settings.SYNC_TARGET}'...")
    kopf.run(
        standalone=True,
        namespaces=[settings.DOWNSTREAM_NAMESPACE],
        liveness_endpoint=settings.LIVENESS_ENDPOINT or None,
    )


if __name__ == "__main__":
    main()

from __future__ import annotations
import os


def _default_concurrency() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


CONCURRENCY = int(os.environ.get("MATRIXCI_CONCURRENCY", _default_concurrency()))
OUTPUT_TAIL = int(os.environ.get("MATRIXCI_OUTPUT_TAIL", "4000"))
LOG_LEVEL = os.environ.get("MATRIXCI_LOG_LEVEL", "WARNING").upper()
DEFAULT_EVENT = os.environ.get("MATRIXCI_DEFAULT_EVENT", "push")

"""Runtime module for process execution and stream handling.

This module provides the process orchestrator, the concurrent stream task
helper and the supporting primitives (exception aggregation, worker pool,
process tree killing, diagnostic context propagation).
"""

from __future__ import annotations

from .aggregator import ExceptionAggregator
from .process_runner import ProcessRunner
from .process_tree import kill_process_tree
from .stream_tasks import StreamTaskHelper
from .worker_pool import DaemonThreadPool, get_default_pool

__all__ = [
    "DaemonThreadPool",
    "ExceptionAggregator",
    "ProcessRunner",
    "StreamTaskHelper",
    "get_default_pool",
    "kill_process_tree",
]

"""Worker package - Queue consumers."""

from orchestrator.worker.pool import WorkerPool

__all__ = ["WorkerPool"]

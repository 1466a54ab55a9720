"""Orchestration layer — the queue consumer that drives the schedulers."""

from billboard_keeper.orchestration.worker import HANDLERS, JobWorker

__all__ = ["HANDLERS", "JobWorker"]

"""Background workers supporting async processing."""

from .expiry_sweep import ExpirySweepWorker

__all__ = ["ExpirySweepWorker"]

"""Startup reconciliation of persisted logs and the in-memory timeline."""

from .reconciler import HistoryReconciler, HistoryFileError, ReconcileReport
from .timeline import Timeline

__all__ = ["HistoryReconciler", "HistoryFileError", "ReconcileReport", "Timeline"]

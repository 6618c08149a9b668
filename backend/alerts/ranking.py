"""
Alert Ranker — Priority ordering for the critical alert view.

priority = severity weight + financial impact / 1000

Works on anything exposing ``severity`` and ``financial_impact``:
detector candidates and persisted SmartAlert rows alike.
"""

from collections.abc import Iterable
from typing import TypeVar

from alerts.base import SEVERITY_WEIGHTS

T = TypeVar("T")


def get_severity_weight(severity) -> int:
    value = getattr(severity, "value", severity)
    return SEVERITY_WEIGHTS.get(value, 0)


def priority(alert) -> float:
    return get_severity_weight(alert.severity) + (alert.financial_impact or 0) / 1000


def rank_alerts(alerts: Iterable[T], limit: int | None = None) -> list[T]:
    """Highest priority first. Python's sort is stable, so ties keep emission order."""
    ranked = sorted(alerts, key=priority, reverse=True)
    if limit is not None:
        ranked = ranked[: max(limit, 0)]
    return ranked

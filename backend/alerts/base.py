"""
Smart Alert types shared by detectors, the alert repository and the ranker.

A detector emits AlertCandidates. Each candidate carries a natural key
derived from its type and affected entity (never random), so re-running
detection over unchanged data yields the same keys and the repository
can deduplicate against alerts that are already active.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AlertType(str, Enum):
    STOCKOUT_PREDICTED = "stockout_predicted"
    DEAD_STOCK = "dead_stock"
    STOCK_IMBALANCE = "stock_imbalance"
    HIGH_VALUE_BACKORDER = "high_value_backorder"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertStatus(str, Enum):
    """Active → Dismissed | Expired. Both end states are terminal."""

    ACTIVE = "active"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


SEVERITY_WEIGHTS: dict[str, int] = {
    Severity.CRITICAL.value: 1000,
    Severity.HIGH.value: 500,
    Severity.MEDIUM.value: 100,
    Severity.LOW.value: 10,
}


@dataclass
class QuickAction:
    """
    Opaque command descriptor for the caller to execute (e.g. create a PO).

    The engine never executes it and never writes to the operational store.
    """

    label: str
    command: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "command": self.command, "params": dict(self.params)}


@dataclass
class AlertCandidate:
    key: str
    alert_type: AlertType
    severity: Severity
    title: str
    description: str
    financial_impact: float
    affected_entity_ids: list[str]
    suggested_action: str
    quick_action: QuickAction | None = None
    days_until_critical: int | None = None
    confidence: float | None = None

    def __post_init__(self):
        # Set semantics: order is irrelevant, duplicates collapse
        self.affected_entity_ids = sorted(set(self.affected_entity_ids))
        if self.confidence is not None and not 0 <= self.confidence <= 1:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


def alert_key(alert_type: AlertType, entity_id: str) -> str:
    return f"{alert_type.value}:{entity_id}"

from types import SimpleNamespace

from alerts.base import Severity
from alerts.ranking import get_severity_weight, priority, rank_alerts


def _alert(name, severity, impact):
    return SimpleNamespace(name=name, severity=severity, financial_impact=impact)


class TestSeverityWeight:
    def test_weights(self):
        assert get_severity_weight(Severity.CRITICAL) == 1000
        assert get_severity_weight("high") == 500
        assert get_severity_weight(Severity.MEDIUM) == 100
        assert get_severity_weight("low") == 10

    def test_unknown_severity_weighs_nothing(self):
        assert get_severity_weight("info") == 0


class TestRankAlerts:
    def test_priority_adds_impact_in_thousands(self):
        assert priority(_alert("a", "high", 2500)) == 502.5

    def test_severity_dominates_moderate_impact(self):
        ranked = rank_alerts([_alert("high", "high", 400_000), _alert("critical", "critical", 0)])
        assert [a.name for a in ranked] == ["critical", "high"]

    def test_large_impact_can_lift_lower_severity(self):
        ranked = rank_alerts([_alert("critical", "critical", 0), _alert("high", "high", 600_000)])
        assert [a.name for a in ranked] == ["high", "critical"]

    def test_negative_impact_lowers_priority(self):
        ranked = rank_alerts([_alert("dead", "medium", -300), _alert("plain", "medium", 0)])
        assert [a.name for a in ranked] == ["plain", "dead"]

    def test_ties_keep_emission_order(self):
        alerts = [_alert(str(i), "high", 100) for i in range(5)]
        assert [a.name for a in rank_alerts(alerts)] == ["0", "1", "2", "3", "4"]

    def test_limit_truncates_after_sorting(self):
        alerts = [_alert("low", "low", 0), _alert("critical", "critical", 0), _alert("high", "high", 0)]
        assert [a.name for a in rank_alerts(alerts, limit=2)] == ["critical", "high"]

    def test_zero_limit_is_empty(self):
        assert rank_alerts([_alert("a", "high", 0)], limit=0) == []

    def test_empty_input(self):
        assert rank_alerts([], limit=5) == []

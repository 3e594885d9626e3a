"""Tests for src.analyzer.metrics — alert filters, ordering and volume metrics."""

from __future__ import annotations

import pytest

from src.analyzer.metrics import (
    ALERT_METRICS_CSV_COLUMNS,
    AlertFilter,
    AlertMetrics,
    alerts_by_service,
    compute_alert_metrics,
    critical_alerts,
    filter_alerts,
    group_alerts_by_service,
    group_alerts_by_source,
    sort_alerts_by_severity,
)
from tests.conftest import make_alert, ts_offset


@pytest.fixture
def alerts():
    return [
        make_alert(alert_id="w1", severity="warning", timestamp=ts_offset(seconds=0)),
        make_alert(
            alert_id="c1", severity="critical", service="db", source="datadog",
            timestamp=ts_offset(seconds=60),
        ),
        make_alert(
            alert_id="i1", severity="info", status="resolved", timestamp=ts_offset(seconds=120)
        ),
        make_alert(alert_id="c2", severity="critical", timestamp=ts_offset(seconds=180)),
    ]


class TestFilter:
    def test_no_filter_copies(self, alerts):
        out = filter_alerts(alerts)
        assert out == alerts
        assert out is not alerts

    def test_severity_and_status(self, alerts):
        flt = AlertFilter(severities=["critical", "info"], statuses=["open"])
        assert [a.alert_id for a in filter_alerts(alerts, flt)] == ["c1", "c2"]

    def test_source(self, alerts):
        assert [a.alert_id for a in filter_alerts(alerts, AlertFilter(sources=["datadog"]))] == [
            "c1"
        ]

    def test_time_bounds_inclusive(self, alerts):
        flt = AlertFilter(since=ts_offset(seconds=60), until=ts_offset(seconds=120))
        assert [a.alert_id for a in filter_alerts(alerts, flt)] == ["c1", "i1"]


class TestOrdering:
    def test_critical_first_then_time(self, alerts):
        assert [a.alert_id for a in sort_alerts_by_severity(alerts)] == ["c1", "c2", "w1", "i1"]

    def test_selectors(self, alerts):
        assert [a.alert_id for a in critical_alerts(alerts)] == ["c1", "c2"]
        assert [a.alert_id for a in alerts_by_service(alerts, "db")] == ["c1"]

    def test_grouping(self, alerts):
        by_service = group_alerts_by_service(alerts)
        assert sorted(by_service) == ["api-service", "db"]
        assert len(by_service["api-service"]) == 3
        assert set(group_alerts_by_source(alerts)) == {"prometheus", "datadog"}


class TestAlertMetrics:
    def test_counts(self, alerts):
        m = compute_alert_metrics(alerts)
        assert m.total == 4
        assert m.by_severity == {"warning": 1, "critical": 2, "info": 1}
        assert m.by_service == {"api-service": 3, "db": 1}
        assert m.critical_ratio == 0.5

    def test_empty(self):
        m = compute_alert_metrics([])
        assert m.total == 0
        assert m.critical_ratio == 0.0

    def test_csv_row(self, alerts):
        m = compute_alert_metrics(alerts)
        assert AlertMetrics.csv_header().split(",") == ALERT_METRICS_CSV_COLUMNS
        assert m.to_csv_row() == "4,2,1,0,1,2,2,0.5000"

    def test_to_dict(self, alerts):
        data = compute_alert_metrics(alerts).to_dict()
        assert data["critical_ratio"] == 0.5
        assert data["by_source"] == {"prometheus": 3, "datadog": 1}

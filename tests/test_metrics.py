import pytest

from apps.api.metrics import MetricsRegistry, PrometheusExporter, register_default_metrics
from apps.api.metrics.definitions import TICKET_OPERATION_DURATION, TICKET_STATUS_CHANGES, TICKETS_CREATED
from apps.api.services.tickets import TicketStatus


def test_counters_are_keyed_by_enum_value():
    registry = register_default_metrics(MetricsRegistry())
    counter = registry.counter(TICKET_STATUS_CHANGES)

    counter.inc(labels={"status": TicketStatus.RESOLVED})
    counter.inc(labels={"status": "resolved"})

    assert counter.value(labels={"status": "resolved"}) == 2
    with pytest.raises(ValueError):
        counter.inc()
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"status": "open"})


def test_registry_rejects_type_mismatch():
    registry = register_default_metrics(MetricsRegistry())

    with pytest.raises(TypeError):
        registry.distribution(TICKETS_CREATED)


def test_time_distribution_records_failures():
    registry = register_default_metrics(MetricsRegistry())

    with pytest.raises(RuntimeError):
        with registry.time_distribution(TICKET_OPERATION_DURATION, labels={"operation": "assign"}):
            raise RuntimeError("boom")

    stats = registry.distribution(TICKET_OPERATION_DURATION).snapshot()[("assign",)]
    assert stats["count"] == 1.0


def test_prometheus_payload_and_reset():
    registry = register_default_metrics(MetricsRegistry())
    registry.counter(TICKETS_CREATED).inc(3)
    registry.counter(TICKET_STATUS_CHANGES).inc(labels={"status": "closed"})

    payload = PrometheusExporter(registry).export()

    assert "# TYPE tickets_created_total counter" in payload
    assert "tickets_created_total 3.0" in payload
    assert 'ticket_status_changes_total{status="closed"} 1.0' in payload

    registry.reset()
    assert registry.counter(TICKETS_CREATED).value() == 0
    assert PrometheusExporter(registry).export().count("# HELP") == len(registry.metrics())

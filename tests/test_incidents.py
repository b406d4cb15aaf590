import pytest

from pulse.incidents import (
    IncidentNotFoundError,
    IncidentStateError,
    IncidentTracker,
    duration_seconds,
)
from pulse.models.incident import Incident, IncidentStatus
from pulse.rca import classify

from tests.factories import FakeClock, T0, dns_timeout_result, http_status_result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return IncidentTracker(now=clock)


def test_open_records_root_cause(tracker):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    assert incident.status == IncidentStatus.OPEN.value
    assert incident.started_at == T0
    assert incident.error_category == "DNS_TIMEOUT"
    assert incident.rca_details["category"] == "DNS_TIMEOUT"
    assert tracker.open_incident_for("mon-1") is incident
    assert tracker.get(incident.id) is incident


def test_at_most_one_open_incident_per_monitor(tracker):
    first = tracker.open("mon-1", classify(dns_timeout_result()))
    second = tracker.open("mon-1", classify(http_status_result(503)))
    assert second is None
    assert tracker.open_incidents() == [first]
    assert first.error_category == "DNS_TIMEOUT"


def test_separate_monitors_get_separate_incidents(tracker):
    a = tracker.open("mon-a", classify(dns_timeout_result()))
    b = tracker.open("mon-b", classify(dns_timeout_result()))
    assert a.id != b.id
    assert len(tracker.open_incidents()) == 2


def test_acknowledge(tracker, clock):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    clock.advance(120)
    acked = tracker.acknowledge(incident.id, "oncall@example.com")
    assert acked.status == IncidentStatus.ACKNOWLEDGED.value
    assert acked.acknowledged_by == "oncall@example.com"
    assert acked.acknowledged_at == clock()
    # Still the open incident for the monitor
    assert tracker.open_incident_for("mon-1") is incident


def test_acknowledge_twice_is_rejected(tracker):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    tracker.acknowledge(incident.id, "alice")
    with pytest.raises(IncidentStateError, match="Only OPEN incidents"):
        tracker.acknowledge(incident.id, "bob")
    assert incident.acknowledged_by == "alice"


def test_resolved_incident_is_no_longer_tracked(tracker):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    tracker.resolve(incident.id)
    assert tracker.get(incident.id) is None
    with pytest.raises(IncidentNotFoundError):
        tracker.acknowledge(incident.id, "alice")


def test_acknowledge_unknown_incident(tracker):
    with pytest.raises(IncidentNotFoundError):
        tracker.acknowledge("missing", "alice")


def test_resolve_sets_duration(tracker, clock):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    clock.advance(600)
    resolved = tracker.resolve(incident.id)
    assert resolved.status == IncidentStatus.RESOLVED.value
    assert resolved.resolved_at == clock()
    assert resolved.duration_seconds == 600
    assert tracker.open_incident_for("mon-1") is None


def test_resolve_acknowledged_incident(tracker, clock):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    tracker.acknowledge(incident.id, "alice")
    clock.advance(30)
    tracker.resolve(incident.id)
    assert incident.status == IncidentStatus.RESOLVED.value
    assert incident.acknowledged_by == "alice"


def test_resolve_twice_is_rejected(tracker):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    tracker.resolve(incident.id)
    with pytest.raises(IncidentNotFoundError):
        tracker.resolve(incident.id)


def test_resolved_incidents_are_not_retained(tracker, clock):
    for _ in range(1000):
        incident = tracker.open("mon-1", classify(dns_timeout_result()))
        clock.advance(60)
        tracker.resolve(incident.id)
    assert tracker._known == {}
    assert tracker.open_incidents() == []


def test_forget_drops_monitor_incidents(tracker):
    gone = tracker.open("mon-1", classify(dns_timeout_result()))
    kept = tracker.open("mon-2", classify(dns_timeout_result()))
    tracker.forget("mon-1")
    assert tracker.get(gone.id) is None
    assert tracker.open_incident_for("mon-1") is None
    assert tracker.open_incidents() == [kept]


def test_new_incident_after_resolution(tracker, clock):
    first = tracker.open("mon-1", classify(dns_timeout_result()))
    tracker.resolve(first.id)
    clock.advance(60)
    second = tracker.open("mon-1", classify(http_status_result(503)))
    assert second is not None
    assert second.id != first.id
    assert second.error_category == "HTTP_5XX"


def test_reclassify_keeps_start_time(tracker, clock):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    clock.advance(90)
    tracker.reclassify(incident, classify(http_status_result(503)))
    assert incident.error_category == "HTTP_5XX"
    assert incident.started_at == T0
    assert incident.updated_at == clock()


def test_annotate(tracker):
    incident = tracker.open("mon-1", classify(dns_timeout_result()))
    tracker.annotate(incident.id, "Upstream DNS provider outage")
    assert incident.notes == "Upstream DNS provider outage"


def test_restore_tracks_open_incidents(tracker):
    open_one = Incident(monitor_id="mon-1", status=IncidentStatus.ACKNOWLEDGED.value)
    closed = Incident(monitor_id="mon-2", status=IncidentStatus.RESOLVED.value)
    tracker.restore([open_one, closed])
    assert tracker.open_incident_for("mon-1") is open_one
    assert tracker.open_incident_for("mon-2") is None
    assert tracker.get(closed.id) is None


def test_restore_keeps_first_of_duplicate_open_incidents(tracker):
    newest = Incident(monitor_id="mon-1")
    older = Incident(monitor_id="mon-1")
    tracker.restore([newest, older])
    assert tracker.open_incident_for("mon-1") is newest
    assert tracker.open(
        "mon-1", classify(dns_timeout_result())
    ) is None


def test_duration_handles_naive_datetimes():
    naive_start = T0.replace(tzinfo=None)
    assert duration_seconds(naive_start, T0.replace(minute=5)) == 300

"""Tests for status transitions and their coupling to the incident lifecycle."""
import pytest

from pulse.incidents import IncidentTracker
from pulse.models.incident import IncidentStatus
from pulse.models.monitor import MonitorStatus
from pulse.rca import RCACategory
from pulse.status import StatusMachine

from tests.factories import (
    FakeClock,
    T0,
    dns_timeout_result,
    http_status_result,
    make_monitor,
    ok_result,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return IncidentTracker(now=clock)


@pytest.fixture
def machine(tracker, clock):
    return StatusMachine(tracker, degraded_threshold=1, down_threshold=3, now=clock)


def test_thresholds_are_validated(tracker):
    with pytest.raises(ValueError):
        StatusMachine(tracker, degraded_threshold=0)
    with pytest.raises(ValueError):
        StatusMachine(tracker, degraded_threshold=3, down_threshold=2)


def test_first_success_marks_up(machine, clock):
    monitor = make_monitor()
    transition = machine.apply(monitor, ok_result())
    assert transition.previous == MonitorStatus.UNKNOWN
    assert transition.current == MonitorStatus.UP
    assert transition.changed
    assert monitor.current_status == "UP"
    assert monitor.last_check_at == clock()
    assert monitor.last_status_change_at == clock()
    assert transition.rca.category is None


def test_dns_timeouts_escalate_to_down_with_incident(machine, tracker, clock):
    monitor = make_monitor()
    machine.apply(monitor, ok_result())

    statuses = []
    opened = []
    for _ in range(3):
        clock.advance(60)
        transition = machine.apply(monitor, dns_timeout_result(at=clock()))
        statuses.append(transition.current)
        opened.append(transition.opened)

    assert statuses == [MonitorStatus.DEGRADED, MonitorStatus.DEGRADED, MonitorStatus.DOWN]
    assert opened[0] is None and opened[1] is None
    incident = opened[2]
    assert incident is not None
    assert incident.error_category == RCACategory.DNS_TIMEOUT.value
    assert incident.started_at == clock()
    assert monitor.consecutive_failures == 3
    assert tracker.open_incident_for(monitor.id) is incident


def test_recovery_resolves_incident(machine, clock):
    monitor = make_monitor()
    for _ in range(3):
        machine.apply(monitor, dns_timeout_result())
    incident = machine._tracker.open_incident_for(monitor.id)
    started = clock()

    clock.advance(300)
    transition = machine.apply(monitor, ok_result(at=clock()))

    assert transition.current == MonitorStatus.UP
    assert transition.resolved is incident
    assert incident.status == IncidentStatus.RESOLVED.value
    assert incident.duration_seconds == 300
    assert incident.started_at == started
    assert monitor.consecutive_failures == 0


def test_success_from_degraded_has_no_incident(machine):
    monitor = make_monitor()
    machine.apply(monitor, dns_timeout_result())
    transition = machine.apply(monitor, ok_result())
    assert transition.previous == MonitorStatus.DEGRADED
    assert transition.current == MonitorStatus.UP
    assert transition.resolved is None


def test_further_failures_while_down_do_not_open_another_incident(machine, tracker):
    monitor = make_monitor()
    for _ in range(3):
        machine.apply(monitor, dns_timeout_result())
    first = tracker.open_incident_for(monitor.id)

    transition = machine.apply(monitor, dns_timeout_result())

    assert transition.opened is None
    assert transition.reclassified is None
    assert not transition.changed
    assert tracker.open_incidents() == [first]
    assert monitor.consecutive_failures == 4


def test_changed_cause_reclassifies_open_incident(machine, tracker, clock):
    monitor = make_monitor()
    for _ in range(3):
        machine.apply(monitor, dns_timeout_result())
    incident = tracker.open_incident_for(monitor.id)
    started = incident.started_at

    clock.advance(60)
    transition = machine.apply(monitor, http_status_result(503))

    assert transition.reclassified is incident
    assert transition.touched_incident is incident
    assert incident.error_category == RCACategory.HTTP_5XX.value
    assert incident.started_at == started
    assert tracker.open_incidents() == [incident]


def test_acknowledged_incident_is_not_reopened(machine, tracker):
    monitor = make_monitor()
    for _ in range(3):
        machine.apply(monitor, dns_timeout_result())
    incident = tracker.open_incident_for(monitor.id)
    tracker.acknowledge(incident.id, "alice")

    transition = machine.apply(monitor, dns_timeout_result())
    assert transition.opened is None
    assert incident.status == IncidentStatus.ACKNOWLEDGED.value


def test_status_change_time_only_moves_on_change(machine, clock):
    monitor = make_monitor()
    machine.apply(monitor, dns_timeout_result())
    changed_at = monitor.last_status_change_at
    assert changed_at == T0

    clock.advance(60)
    machine.apply(monitor, dns_timeout_result())
    assert monitor.current_status == "DEGRADED"
    assert monitor.last_status_change_at == changed_at
    assert monitor.last_check_at == clock()


def test_higher_degraded_threshold_keeps_status(tracker, clock):
    machine = StatusMachine(tracker, degraded_threshold=2, down_threshold=4, now=clock)
    monitor = make_monitor()
    machine.apply(monitor, ok_result())

    transition = machine.apply(monitor, dns_timeout_result())
    assert transition.current == MonitorStatus.UP
    assert monitor.consecutive_failures == 1

    transition = machine.apply(monitor, dns_timeout_result())
    assert transition.current == MonitorStatus.DEGRADED


def test_down_threshold_of_one_opens_immediately(tracker, clock):
    machine = StatusMachine(tracker, degraded_threshold=1, down_threshold=1, now=clock)
    monitor = make_monitor()
    transition = machine.apply(monitor, http_status_result(500))
    assert transition.current == MonitorStatus.DOWN
    assert transition.opened is not None


def test_paused_monitor_ignores_results(machine, tracker):
    monitor = make_monitor()
    machine.pause(monitor)
    transition = machine.apply(monitor, dns_timeout_result())
    assert transition.ignored
    assert transition.rca is None
    assert monitor.current_status == "PAUSED"
    assert monitor.consecutive_failures == 0
    assert monitor.last_check_at is None
    assert tracker.open_incidents() == []


def test_pause_and_resume(machine):
    monitor = make_monitor()
    machine.apply(monitor, dns_timeout_result())

    paused = machine.pause(monitor)
    assert paused.current == MonitorStatus.PAUSED
    assert monitor.is_active is False

    resumed = machine.resume(monitor)
    assert resumed.previous == MonitorStatus.PAUSED
    assert resumed.current == MonitorStatus.UNKNOWN
    assert monitor.is_active is True
    assert monitor.consecutive_failures == 0

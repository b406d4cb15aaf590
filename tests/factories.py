"""Builders for check results and monitors used across the test suite."""
import asyncio
from datetime import datetime, timedelta, timezone

from pulse.models.monitor import Monitor
from pulse.phases import (
    CheckResult,
    DNSPhase,
    ErrorKind,
    HTTPPhase,
    KeywordPhase,
    TCPPhase,
    TLSPhase,
)

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


def make_monitor(**overrides) -> Monitor:
    fields = {
        "name": "Example",
        "url": "https://example.com/health",
        "interval_seconds": 60,
        "timeout_ms": 10000,
    }
    fields.update(overrides)
    return Monitor(**fields)


def dns_ok() -> DNSPhase:
    return DNSPhase(duration_ms=5, success=True, resolved_ip="93.184.216.34")


def tcp_ok() -> TCPPhase:
    return TCPPhase(duration_ms=10, success=True, port=443)


def tls_ok() -> TLSPhase:
    return TLSPhase(
        duration_ms=20, success=True, protocol="TLSv1.3",
        cipher="TLS_AES_256_GCM_SHA384", cert_valid=True,
    )


def http_phase(status_code: int = 200, expected: int = 200) -> HTTPPhase:
    return HTTPPhase(
        duration_ms=50,
        success=status_code == expected,
        status_code=status_code,
        status_text="OK" if status_code == 200 else "Error",
        expected_status=expected,
    )


def ok_result(at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=True, checked_at=at, total_duration_ms=85,
        dns=dns_ok(), tcp=tcp_ok(), tls=tls_ok(), http=http_phase(),
    )


def dns_timeout_result(at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=5000,
        dns=DNSPhase(
            duration_ms=5000, success=False,
            error="DNS lookup for example.com timed out after 5000ms",
            error_kind=ErrorKind.TIMEOUT,
        ),
    )


def dns_failure_result(at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=12,
        dns=DNSPhase(
            duration_ms=12, success=False,
            error="The DNS query name does not exist: example.invalid.",
            error_kind=ErrorKind.NOT_FOUND,
        ),
    )


def tcp_failure_result(kind: ErrorKind, at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=15,
        dns=dns_ok(),
        tcp=TCPPhase(duration_ms=10, success=False, port=443, error=f"tcp {kind.value}", error_kind=kind),
    )


def tls_failure_result(kind: ErrorKind, at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=35,
        dns=dns_ok(), tcp=tcp_ok(),
        tls=TLSPhase(duration_ms=20, success=False, cert_valid=False, error=f"tls {kind.value}", error_kind=kind),
    )


def http_status_result(status_code: int, expected: int = 200, at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=85,
        dns=dns_ok(), tcp=tcp_ok(), tls=tls_ok(),
        http=http_phase(status_code, expected),
    )


def http_error_result(kind: ErrorKind, at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=85,
        dns=dns_ok(), tcp=tcp_ok(), tls=tls_ok(),
        http=HTTPPhase(
            duration_ms=50, success=False, expected_status=200,
            error=f"http {kind.value}", error_kind=kind,
        ),
    )


def keyword_missing_result(keyword: str = "OK", at: datetime = T0) -> CheckResult:
    return CheckResult(
        success=False, checked_at=at, total_duration_ms=85,
        dns=dns_ok(), tcp=tcp_ok(), tls=tls_ok(), http=http_phase(),
        keyword=KeywordPhase(
            duration_ms=0, success=False, expected=keyword, found=False,
            error=f'Keyword "{keyword}" not found',
        ),
    )


class StubPipeline:
    """Stands in for ProbePipeline: returns queued results, optionally held on a gate."""

    def __init__(self, *results: CheckResult):
        self.results = list(results)
        self.calls: list[str] = []
        self.gate = None
        self.closed = False

    async def run(self, monitor) -> CheckResult:
        self.calls.append(monitor.id)
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            return self.results.pop(0)
        return ok_result()

    async def aclose(self) -> None:
        self.closed = True


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def notify(self, incident, transition: str) -> None:
        self.sent.append((incident.id, transition))


class FailingNotifier:
    async def notify(self, incident, transition: str) -> None:
        raise RuntimeError("mail server unreachable")


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while not predicate():
        if loop.time() > end:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)

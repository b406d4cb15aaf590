"""
Probe pipeline: runs the diagnostic phases of one check in order
(DNS, TCP, TLS, HTTP, keyword) against a single timeout budget.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

import httpx

from pulse.config import get_settings
from pulse.phases import (
    CheckResult,
    DNSPhase,
    ErrorKind,
    HTTPPhase,
    PhaseResult,
    ProbeTarget,
    TCPPhase,
    TLSPhase,
    check_keyword,
    probe_dns,
    probe_http,
    probe_tcp,
    probe_tls,
)

logger = logging.getLogger("pulse.checker")

_DEFAULT_PORTS = {"http": 80, "https": 443}


class _Budget:
    """Remaining share of a check's timeout, in seconds."""

    def __init__(self, timeout_ms: int):
        self._deadline = time.monotonic() + timeout_ms / 1000

    def remaining(self) -> float:
        return self._deadline - time.monotonic()

    @property
    def exhausted(self) -> bool:
        return self.remaining() <= 0


def _exhausted(phase_cls: type[PhaseResult]) -> PhaseResult:
    return phase_cls(
        duration_ms=0,
        success=False,
        error="Check timeout exhausted before phase started",
        error_kind=ErrorKind.TIMEOUT,
    )


def build_http_client() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=settings.max_redirects,
        verify=True,
        limits=httpx.Limits(
            max_connections=settings.http_max_connections,
            max_keepalive_connections=settings.http_max_keepalive,
        ),
    )


class ProbePipeline:
    """Executes checks. One instance (and its connection pool) serves all monitors."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, user_agent: Optional[str] = None):
        self._client = client or build_http_client()
        self._user_agent = user_agent or get_settings().user_agent

    async def aclose(self) -> None:
        await self._client.aclose()

    async def run(self, monitor) -> CheckResult:
        """Run one check for ``monitor``. Never raises except on cancellation."""
        checked_at = datetime.now(timezone.utc)
        try:
            target = ProbeTarget.from_monitor(monitor)
            return await self._run_phases(target, checked_at)
        except Exception as e:
            logger.exception(f"Probe pipeline crashed for monitor {monitor.id}")
            return CheckResult(
                success=False,
                checked_at=checked_at,
                error=f"Unexpected error: {str(e)[:200]}",
            )

    async def _run_phases(self, target: ProbeTarget, checked_at: datetime) -> CheckResult:
        parts = urlsplit(target.url)
        scheme = (parts.scheme or "").lower()
        host = parts.hostname or ""
        port = parts.port or _DEFAULT_PORTS.get(scheme, 80)
        budget = _Budget(target.timeout_ms)
        phases: dict[str, PhaseResult] = {}

        def finish(success: bool) -> CheckResult:
            return CheckResult(
                success=success,
                checked_at=checked_at,
                total_duration_ms=sum(p.duration_ms for p in phases.values()),
                **phases,
            )

        # DNS
        dns_phase = (
            _exhausted(DNSPhase) if budget.exhausted
            else await probe_dns(host, budget.remaining())
        )
        phases["dns"] = dns_phase
        if not dns_phase.success:
            return finish(False)
        address = dns_phase.resolved_ip or host

        # TCP
        tcp_phase = (
            _exhausted(TCPPhase) if budget.exhausted
            else await probe_tcp(address, port, budget.remaining())
        )
        phases["tcp"] = tcp_phase
        if not tcp_phase.success:
            return finish(False)

        # TLS, only when the scheme asks for it
        if scheme == "https":
            tls_phase = (
                _exhausted(TLSPhase) if budget.exhausted
                else await probe_tls(host, address, port, budget.remaining())
            )
            phases["tls"] = tls_phase
            if not tls_phase.success:
                return finish(False)

        # HTTP
        body = None
        if budget.exhausted:
            http_phase = _exhausted(HTTPPhase)
        else:
            http_phase, body = await probe_http(
                self._client, target, budget.remaining(), user_agent=self._user_agent
            )
        phases["http"] = http_phase
        if not http_phase.success:
            return finish(False)

        # Keyword
        if target.keyword:
            keyword_phase = check_keyword(body or "", target.keyword)
            phases["keyword"] = keyword_phase
            if not keyword_phase.success:
                return finish(False)

        return finish(True)

"""
Diagnostic phases. Each probe performs exactly one network step against a target
and reports its timing and outcome. Probes never raise transport errors; they are
captured on the returned phase result.
"""
import asyncio
import enum
import ipaddress
import logging
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx
from cryptography import x509
from cryptography.x509.oid import NameOID
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger("pulse.phases")

BODY_PREVIEW_CHARS = 200

# OpenSSL X509_V_ERR_* codes surfaced on ssl.SSLCertVerificationError.verify_code
_X509_CERT_HAS_EXPIRED = 10
_X509_HOSTNAME_MISMATCH = 62


class ErrorKind(str, enum.Enum):
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    REFUSED = "refused"
    RESET = "reset"
    UNREACHABLE = "unreachable"
    EXPIRED = "expired"
    INVALID = "invalid"
    HOSTNAME_MISMATCH = "hostname_mismatch"
    HANDSHAKE = "handshake"
    EMPTY = "empty"
    OTHER = "other"


class PhaseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration_ms: int
    success: bool
    error: Optional[str] = None


class DNSPhase(PhaseResult):
    resolved_ip: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class TCPPhase(PhaseResult):
    port: Optional[int] = None
    error_kind: Optional[ErrorKind] = None


class TLSPhase(PhaseResult):
    protocol: Optional[str] = None
    cipher: Optional[str] = None
    cert_valid: Optional[bool] = None
    cert_expires: Optional[datetime] = None
    cert_issuer: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class HTTPPhase(PhaseResult):
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    expected_status: Optional[int] = None
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    server: Optional[str] = None
    response_body_preview: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class KeywordPhase(PhaseResult):
    expected: str
    found: bool


PHASE_ORDER = ("dns", "tcp", "tls", "http", "keyword")


class CheckResult(BaseModel):
    """Outcome of one pipeline execution. Absent phases never ran."""

    model_config = ConfigDict(frozen=True)

    success: bool
    checked_at: datetime
    total_duration_ms: int = 0
    dns: Optional[DNSPhase] = None
    tcp: Optional[TCPPhase] = None
    tls: Optional[TLSPhase] = None
    http: Optional[HTTPPhase] = None
    keyword: Optional[KeywordPhase] = None
    # Set only when the pipeline itself failed, outside any phase
    error: Optional[str] = None
    timed_out: bool = False

    def phase_map(self) -> dict[str, dict]:
        phases = {}
        for name in PHASE_ORDER:
            phase = getattr(self, name)
            if phase is not None:
                phases[name] = phase.model_dump(mode="json", exclude_none=True)
        return phases

    @property
    def has_phases(self) -> bool:
        return any(getattr(self, name) is not None for name in PHASE_ORDER)

    @property
    def status_code(self) -> Optional[int]:
        return self.http.status_code if self.http else None


@dataclass(frozen=True)
class ProbeTarget:
    """Monitor configuration captured when a check starts."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = 30000
    expected_status: int = 200
    keyword: Optional[str] = None

    @classmethod
    def from_monitor(cls, monitor) -> "ProbeTarget":
        return cls(
            url=monitor.url,
            method=(monitor.method or "GET").upper(),
            headers=dict(monitor.headers or {}),
            timeout_ms=monitor.timeout_ms,
            expected_status=monitor.expected_status,
            keyword=monitor.keyword or None,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _short(exc: BaseException) -> str:
    text = str(exc) or type(exc).__name__
    return text[:200]


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


async def _resolve_first(host: str, lifetime: float) -> str:
    try:
        answer = await dns.asyncresolver.resolve(host, "A", lifetime=lifetime)
    except dns.resolver.NoAnswer:
        # IPv6-only hosts
        answer = await dns.asyncresolver.resolve(host, "AAAA", lifetime=lifetime)
    return answer[0].to_text()


async def probe_dns(host: str, deadline: float) -> DNSPhase:
    """Resolve ``host`` to its first address within ``deadline`` seconds."""
    start = time.monotonic()
    if not host:
        return DNSPhase(
            duration_ms=0, success=False, error="URL has no host",
            error_kind=ErrorKind.NOT_FOUND,
        )
    if _is_ip_literal(host):
        return DNSPhase(duration_ms=0, success=True, resolved_ip=host)

    try:
        address = await asyncio.wait_for(
            _resolve_first(host, max(deadline, 0.001)), timeout=deadline
        )
    except (asyncio.TimeoutError, dns.exception.Timeout):
        return DNSPhase(
            duration_ms=_elapsed_ms(start),
            success=False,
            error=f"DNS lookup for {host} timed out after {int(deadline * 1000)}ms",
            error_kind=ErrorKind.TIMEOUT,
        )
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers) as e:
        return DNSPhase(
            duration_ms=_elapsed_ms(start),
            success=False,
            error=_short(e),
            error_kind=ErrorKind.NOT_FOUND,
        )
    except Exception as e:
        return DNSPhase(
            duration_ms=_elapsed_ms(start),
            success=False,
            error=_short(e),
            error_kind=ErrorKind.OTHER,
        )

    return DNSPhase(duration_ms=_elapsed_ms(start), success=True, resolved_ip=address)


async def _close_quietly(writer: Optional[asyncio.StreamWriter]) -> None:
    if writer is None:
        return
    writer.close()
    try:
        await writer.wait_closed()
    except (OSError, ssl.SSLError):
        # Peer already gone; the phase outcome is settled
        pass


async def probe_tcp(address: str, port: int, deadline: float) -> TCPPhase:
    """Open and immediately close a TCP connection to ``address:port``."""
    start = time.monotonic()
    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout=deadline
        )
    except asyncio.TimeoutError:
        return TCPPhase(
            duration_ms=_elapsed_ms(start), success=False, port=port,
            error=f"TCP connection to {address}:{port} timed out",
            error_kind=ErrorKind.TIMEOUT,
        )
    except ConnectionRefusedError as e:
        return TCPPhase(
            duration_ms=_elapsed_ms(start), success=False, port=port,
            error=_short(e), error_kind=ErrorKind.REFUSED,
        )
    except ConnectionResetError as e:
        return TCPPhase(
            duration_ms=_elapsed_ms(start), success=False, port=port,
            error=_short(e), error_kind=ErrorKind.RESET,
        )
    except OSError as e:
        return TCPPhase(
            duration_ms=_elapsed_ms(start), success=False, port=port,
            error=_short(e), error_kind=ErrorKind.UNREACHABLE,
        )
    else:
        return TCPPhase(duration_ms=_elapsed_ms(start), success=True, port=port)
    finally:
        await _close_quietly(writer)


def _tls_error_kind(exc: ssl.SSLCertVerificationError) -> ErrorKind:
    if exc.verify_code == _X509_CERT_HAS_EXPIRED:
        return ErrorKind.EXPIRED
    if exc.verify_code == _X509_HOSTNAME_MISMATCH:
        return ErrorKind.HOSTNAME_MISMATCH
    return ErrorKind.INVALID


def _issuer_org(cert: x509.Certificate) -> Optional[str]:
    attrs = cert.issuer.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
    return str(attrs[0].value) if attrs else None


async def probe_tls(host: str, address: str, port: int, deadline: float) -> TLSPhase:
    """Perform a verifying TLS handshake and read the peer certificate.

    The connection goes to ``address`` (already resolved) while ``host`` is used
    for SNI and hostname verification.
    """
    start = time.monotonic()
    context = ssl.create_default_context()
    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port, ssl=context, server_hostname=host),
            timeout=deadline,
        )
        ssl_object = writer.get_extra_info("ssl_object")
        cipher = ssl_object.cipher() if ssl_object else None
        cert_der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        cert_expires = None
        cert_issuer = None
        if cert_der:
            cert = x509.load_der_x509_certificate(cert_der)
            cert_expires = cert.not_valid_after_utc
            cert_issuer = _issuer_org(cert)
        return TLSPhase(
            duration_ms=_elapsed_ms(start),
            success=True,
            protocol=ssl_object.version() if ssl_object else None,
            cipher=cipher[0] if cipher else None,
            cert_valid=True,
            cert_expires=cert_expires,
            cert_issuer=cert_issuer,
        )
    except asyncio.TimeoutError:
        return TLSPhase(
            duration_ms=_elapsed_ms(start), success=False,
            error=f"TLS handshake with {host} timed out",
            error_kind=ErrorKind.TIMEOUT,
        )
    except ssl.SSLCertVerificationError as e:
        return TLSPhase(
            duration_ms=_elapsed_ms(start), success=False, cert_valid=False,
            error=e.verify_message or _short(e),
            error_kind=_tls_error_kind(e),
        )
    except (ssl.SSLError, OSError, ValueError) as e:
        return TLSPhase(
            duration_ms=_elapsed_ms(start), success=False,
            error=_short(e), error_kind=ErrorKind.HANDSHAKE,
        )
    finally:
        await _close_quietly(writer)


def _transport_kind(exc: BaseException) -> ErrorKind:
    """Find the socket-level cause behind an httpx transport error."""
    seen = exc
    while seen is not None:
        if isinstance(seen, ConnectionRefusedError):
            return ErrorKind.REFUSED
        if isinstance(seen, ConnectionResetError):
            return ErrorKind.RESET
        seen = seen.__cause__ or seen.__context__
    message = str(exc).lower()
    if "refused" in message:
        return ErrorKind.REFUSED
    if "reset" in message:
        return ErrorKind.RESET
    return ErrorKind.OTHER


def _content_length(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


async def probe_http(
    client: httpx.AsyncClient,
    target: ProbeTarget,
    deadline: float,
    user_agent: str = "Pulse-Monitor/1.0",
) -> tuple[HTTPPhase, Optional[str]]:
    """Send the monitor's request. Returns the phase and the response body."""
    headers = {"User-Agent": user_agent, **target.headers}
    start = time.monotonic()

    def failed(kind: ErrorKind, error: str) -> tuple[HTTPPhase, None]:
        phase = HTTPPhase(
            duration_ms=_elapsed_ms(start), success=False,
            expected_status=target.expected_status,
            error=error, error_kind=kind,
        )
        return phase, None

    try:
        response = await client.request(
            target.method,
            target.url,
            headers=headers,
            timeout=httpx.Timeout(max(deadline, 0.001)),
        )
        body = response.text
    except httpx.TimeoutException:
        return failed(ErrorKind.TIMEOUT, f"Request timed out after {int(deadline * 1000)}ms")
    except httpx.DecodingError as e:
        return failed(ErrorKind.INVALID, f"Invalid response: {_short(e)}")
    except httpx.RemoteProtocolError as e:
        return failed(ErrorKind.EMPTY, f"Server closed the connection: {_short(e)}")
    except httpx.TransportError as e:
        return failed(_transport_kind(e), f"Request error: {_short(e)}")
    except httpx.HTTPError as e:
        return failed(ErrorKind.OTHER, f"Request error: {_short(e)}")

    phase = HTTPPhase(
        duration_ms=_elapsed_ms(start),
        success=response.status_code == target.expected_status,
        status_code=response.status_code,
        status_text=response.reason_phrase,
        expected_status=target.expected_status,
        content_type=response.headers.get("content-type"),
        content_length=_content_length(response.headers.get("content-length")),
        server=response.headers.get("server"),
        response_body_preview=body[:BODY_PREVIEW_CHARS],
    )
    return phase, body


def check_keyword(body: str, keyword: str) -> KeywordPhase:
    """Case-sensitive substring match of ``keyword`` in the response body."""
    start = time.monotonic()
    found = keyword in (body or "")
    return KeywordPhase(
        duration_ms=_elapsed_ms(start),
        success=found,
        expected=keyword,
        found=found,
        error=None if found else f'Keyword "{keyword}" not found',
    )

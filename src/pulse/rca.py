"""
Root cause classification of check results.

Rules are evaluated top-down and the first match wins. Because the pipeline
stops at the first failing phase, a failure in an early phase (DNS) can never
be reported as a failure of a later one (HTTP).
"""
import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from pulse.phases import CheckResult, ErrorKind


class RCACategory(str, enum.Enum):
    DNS_FAILURE = "DNS_FAILURE"
    DNS_TIMEOUT = "DNS_TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    CONNECTION_RESET = "CONNECTION_RESET"
    SSL_CERTIFICATE_EXPIRED = "SSL_CERTIFICATE_EXPIRED"
    SSL_CERTIFICATE_INVALID = "SSL_CERTIFICATE_INVALID"
    SSL_HOSTNAME_MISMATCH = "SSL_HOSTNAME_MISMATCH"
    SSL_HANDSHAKE_FAILED = "SSL_HANDSHAKE_FAILED"
    HTTP_4XX = "HTTP_4XX"
    HTTP_5XX = "HTTP_5XX"
    HTTP_UNEXPECTED_STATUS = "HTTP_UNEXPECTED_STATUS"
    TIMEOUT = "TIMEOUT"
    KEYWORD_MISSING = "KEYWORD_MISSING"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RCADetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Optional[RCACategory]
    message: str
    timestamp: datetime
    phases: dict[str, dict]
    total_duration_ms: int

    def to_json(self) -> dict:
        return self.model_dump(mode="json")


_TCP_CATEGORIES = {
    ErrorKind.REFUSED: RCACategory.CONNECTION_REFUSED,
    ErrorKind.TIMEOUT: RCACategory.CONNECTION_TIMEOUT,
    ErrorKind.RESET: RCACategory.CONNECTION_RESET,
}

_TLS_CATEGORIES = {
    ErrorKind.EXPIRED: RCACategory.SSL_CERTIFICATE_EXPIRED,
    ErrorKind.INVALID: RCACategory.SSL_CERTIFICATE_INVALID,
    ErrorKind.HOSTNAME_MISMATCH: RCACategory.SSL_HOSTNAME_MISMATCH,
    ErrorKind.HANDSHAKE: RCACategory.SSL_HANDSHAKE_FAILED,
    ErrorKind.TIMEOUT: RCACategory.CONNECTION_TIMEOUT,
}

_HTTP_TRANSPORT_CATEGORIES = {
    ErrorKind.TIMEOUT: RCACategory.TIMEOUT,
    ErrorKind.REFUSED: RCACategory.CONNECTION_REFUSED,
    ErrorKind.RESET: RCACategory.CONNECTION_RESET,
    ErrorKind.EMPTY: RCACategory.EMPTY_RESPONSE,
    ErrorKind.INVALID: RCACategory.INVALID_RESPONSE,
}


def _status_category(status_code: int, expected: Optional[int]) -> RCACategory:
    if expected is not None and status_code // 100 == expected // 100:
        return RCACategory.HTTP_UNEXPECTED_STATUS
    if status_code >= 500:
        return RCACategory.HTTP_5XX
    if status_code >= 400:
        return RCACategory.HTTP_4XX
    return RCACategory.HTTP_UNEXPECTED_STATUS


def _diagnose(result: CheckResult) -> tuple[Optional[RCACategory], str]:
    if result.success:
        return None, "Check passed successfully"

    dns = result.dns
    if dns is not None and not dns.success:
        if dns.error_kind == ErrorKind.TIMEOUT:
            return RCACategory.DNS_TIMEOUT, f"DNS resolution timed out: {dns.error}"
        return RCACategory.DNS_FAILURE, f"DNS resolution failed: {dns.error}"

    tcp = result.tcp
    if tcp is not None and not tcp.success:
        category = _TCP_CATEGORIES.get(tcp.error_kind, RCACategory.NETWORK_ERROR)
        return category, f"TCP connection failed: {tcp.error}"

    tls = result.tls
    if tls is not None and not tls.success:
        category = _TLS_CATEGORIES.get(tls.error_kind, RCACategory.SSL_HANDSHAKE_FAILED)
        return category, f"TLS check failed: {tls.error}"

    http = result.http
    if http is not None and not http.success:
        if http.error_kind is not None:
            category = _HTTP_TRANSPORT_CATEGORIES.get(http.error_kind, RCACategory.NETWORK_ERROR)
            return category, http.error or "HTTP request failed"
        if http.status_code is None:
            return RCACategory.NETWORK_ERROR, http.error or "HTTP request failed"
        category = _status_category(http.status_code, http.expected_status)
        reason = f" {http.status_text}" if http.status_text else ""
        if category == RCACategory.HTTP_5XX:
            return category, f"Server returned {http.status_code}{reason}"
        if category == RCACategory.HTTP_4XX:
            return category, f"Client error {http.status_code}{reason}"
        return category, f"Unexpected status {http.status_code}, expected {http.expected_status}"

    keyword = result.keyword
    if keyword is not None and not keyword.found:
        return (
            RCACategory.KEYWORD_MISSING,
            f'Expected keyword "{keyword.expected}" not found in response',
        )

    if not result.has_phases and result.error is None and not result.timed_out:
        return RCACategory.EMPTY_RESPONSE, "Check produced no response data"

    if result.timed_out:
        return RCACategory.TIMEOUT, result.error or "Check exceeded its deadline"

    if result.error is not None:
        return RCACategory.NETWORK_ERROR, f"Network error: {result.error}"

    return RCACategory.UNKNOWN_ERROR, "Check failed for an unknown reason"


def classify(result: CheckResult) -> RCADetails:
    """Map a check result to its root cause category and message."""
    category, message = _diagnose(result)
    return RCADetails(
        category=category,
        message=message,
        timestamp=result.checked_at,
        phases=result.phase_map(),
        total_duration_ms=result.total_duration_ms,
    )

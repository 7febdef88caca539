"""Validation of incoming like API requests."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
import ipaddress
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError
from pydantic_core import from_json

from likecounter.url_normalization import URLNormalizationError, extract_hostname


class LikeOperation(str, Enum):
    """Operations selectable through the ``method`` query parameter."""

    READ = "read"
    UPDATE = "update"


class RejectionReason(str, Enum):
    """Machine-checkable reasons a like request is rejected."""

    METHOD_NOT_ALLOWED = "method_not_allowed"
    MISSING_METHOD = "missing_method"
    INVALID_METHOD = "invalid_method"
    EMPTY_BODY = "empty_body"
    INVALID_JSON = "invalid_json"
    INVALID_URL_FIELD = "invalid_url_field"
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"


REJECTION_STATUS_CODES: dict[RejectionReason, int] = {
    RejectionReason.METHOD_NOT_ALLOWED: 405,
    RejectionReason.MISSING_METHOD: 400,
    RejectionReason.INVALID_METHOD: 400,
    RejectionReason.EMPTY_BODY: 400,
    RejectionReason.INVALID_JSON: 400,
    RejectionReason.INVALID_URL_FIELD: 400,
    RejectionReason.DOMAIN_NOT_ALLOWED: 403,
}

REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.METHOD_NOT_ALLOWED: "Method not allowed. Only POST requests are accepted.",
    RejectionReason.MISSING_METHOD: "Missing required query parameter: method",
    RejectionReason.INVALID_METHOD: 'Invalid method. Must be "read" or "update"',
    RejectionReason.EMPTY_BODY: "Request body cannot be empty",
    RejectionReason.INVALID_JSON: "Invalid JSON in request body",
    RejectionReason.INVALID_URL_FIELD: 'Missing or invalid "url" field in request body',
    RejectionReason.DOMAIN_NOT_ALLOWED: "Domain not allowed",
}


class LikeRequestValidationError(ValueError):
    """Rejection of a like request with its reason and HTTP status."""

    def __init__(self, reason: RejectionReason):
        super().__init__(REJECTION_MESSAGES[reason])
        self.reason = reason
        self.status_code = REJECTION_STATUS_CODES[reason]


class LikeRequestBody(BaseModel):
    """JSON body accepted by the like API."""

    model_config = ConfigDict(extra="ignore")

    url: StrictStr = Field(min_length=1)


@dataclass(slots=True)
class ValidatedLikeRequest:
    """Request that passed every check and is ready for normalization."""

    operation: LikeOperation
    url: str
    host: str | None = None


def extract_root_domain(hostname: str) -> str:
    """
    Return the last two dot-separated labels of a hostname, ignoring any port.

    IP literals and single-label names are returned whole.
    """

    if hostname.startswith("["):
        return hostname[1:].split("]", 1)[0]
    clean_hostname = hostname.split(":", 1)[0] if hostname.count(":") == 1 else hostname
    try:
        ipaddress.ip_address(clean_hostname)
    except ValueError:
        pass
    else:
        return clean_hostname

    labels = clean_hostname.split(".")
    if len(labels) < 2:
        return clean_hostname
    return ".".join(labels[-2:])


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def _parse_operation(query_params: Mapping[str, str]) -> LikeOperation:
    raw_method = query_params.get("method")
    if not raw_method:
        raise LikeRequestValidationError(RejectionReason.MISSING_METHOD)
    try:
        return LikeOperation(raw_method.lower())
    except ValueError as exc:
        raise LikeRequestValidationError(RejectionReason.INVALID_METHOD) from exc


def _parse_body(body: bytes) -> LikeRequestBody:
    if not body.strip():
        raise LikeRequestValidationError(RejectionReason.EMPTY_BODY)
    try:
        payload: Any = from_json(body)
    except ValueError as exc:
        raise LikeRequestValidationError(RejectionReason.INVALID_JSON) from exc

    try:
        return LikeRequestBody.model_validate(payload)
    except ValidationError as exc:
        raise LikeRequestValidationError(RejectionReason.INVALID_URL_FIELD) from exc


def assert_same_domain(
    host: str | None,
    url: str,
    *,
    disallowed_host_suffixes: Iterable[str] = (),
) -> None:
    """
    Reject requests whose Host header and target URL belong to different sites.

    Sites are compared by root domain only, so sibling subdomains match each
    other and IP literals or single-label hosts need an exact match. Hosts on a
    disallowed platform suffix are rejected outright.

    Raises:
        LikeRequestValidationError: with ``DOMAIN_NOT_ALLOWED`` on any mismatch
            or parse failure.
    """

    if not host:
        raise LikeRequestValidationError(RejectionReason.DOMAIN_NOT_ALLOWED)

    request_host = host.strip().lower()
    for suffix in disallowed_host_suffixes:
        if suffix and request_host.split(":", 1)[0].endswith(suffix.lower()):
            raise LikeRequestValidationError(RejectionReason.DOMAIN_NOT_ALLOWED)

    try:
        target_host = extract_hostname(url)
    except URLNormalizationError as exc:
        raise LikeRequestValidationError(RejectionReason.DOMAIN_NOT_ALLOWED) from exc

    if extract_root_domain(request_host) != extract_root_domain(target_host):
        raise LikeRequestValidationError(RejectionReason.DOMAIN_NOT_ALLOWED)


def validate_like_request(
    *,
    http_method: str,
    query_params: Mapping[str, str],
    body: bytes,
    headers: Mapping[str, str],
    same_domain_protection: bool = False,
    disallowed_host_suffixes: Iterable[str] = (),
) -> ValidatedLikeRequest:
    """
    Run the like request checks in order and stop at the first failure.

    Raises:
        LikeRequestValidationError: naming the first failed check.
    """

    if http_method.upper() != "POST":
        raise LikeRequestValidationError(RejectionReason.METHOD_NOT_ALLOWED)

    operation = _parse_operation(query_params)
    parsed_body = _parse_body(body)

    host: str | None = None
    if same_domain_protection:
        host = _header(headers, "Host")
        assert_same_domain(
            host,
            parsed_body.url,
            disallowed_host_suffixes=disallowed_host_suffixes,
        )

    return ValidatedLikeRequest(operation=operation, url=parsed_body.url, host=host)

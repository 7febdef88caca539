"""Canonical key derivation for liked URLs."""

from __future__ import annotations

import ipaddress
import re
from urllib.parse import SplitResult, quote, unquote, urlsplit

import idna

MAX_URL_LENGTH = 65_536

_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*):(.*)$", re.DOTALL)
_FORBIDDEN_HOST_CHARACTERS = frozenset(
    [chr(code) for code in range(0x21)] + list("#/:<>?@[\\]^|%\x7f")
)
# Printable ASCII left as-is in paths; everything else is percent-encoded as UTF-8.
_PATH_SAFE_CHARACTERS = "!$%&'()*+,-./:;=@[\\]^_|~"
_SINGLE_DOT_SEGMENTS = {".", "%2e"}
_DOUBLE_DOT_SEGMENTS = {"..", ".%2e", "%2e.", "%2e%2e"}


class URLNormalizationError(ValueError):
    """Raised when a URL cannot be turned into a canonical key."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def _malformed() -> URLNormalizationError:
    return URLNormalizationError("malformed", "Malformed URL")


def _prepare(url: str) -> tuple[str, str]:
    """Split off the scheme and rebuild the rest the way browsers read http(s) URLs."""

    cleaned = url.strip("".join(chr(code) for code in range(0x21)))
    cleaned = re.sub(r"[\t\n\r]", "", cleaned)

    match = _SCHEME_RE.match(cleaned)
    if match is None:
        return "", cleaned
    scheme, rest = match.group(1).lower(), match.group(2)
    if scheme not in {"http", "https"}:
        return scheme, f"{scheme}:{rest}"

    # Backslashes act as slashes before the query, and any run of slashes
    # after the scheme introduces the authority.
    head_end = len(rest)
    for delimiter in ("?", "#"):
        index = rest.find(delimiter)
        if index != -1:
            head_end = min(head_end, index)
    head = rest[:head_end].replace("\\", "/").lstrip("/")
    return scheme, f"{scheme}://{head}{rest[head_end:]}"


def _canonical_host(parts: SplitResult) -> str:
    try:
        hostname = parts.hostname
        # Accessing the port validates it even though it is not part of the key.
        parts.port
    except ValueError as exc:
        raise _malformed() from exc

    if not hostname:
        raise _malformed()

    if ":" in hostname:
        if "%" in hostname:
            raise _malformed()
        try:
            return f"[{ipaddress.IPv6Address(hostname)}]"
        except ValueError as exc:
            raise _malformed() from exc

    try:
        host = unquote(hostname, errors="strict")
    except UnicodeDecodeError as exc:
        raise _malformed() from exc

    if not host.isascii():
        try:
            host = idna.uts46_remap(host, std3_rules=False, transitional=False)
            host = ".".join(
                label if label.isascii() else idna.alabel(label).decode("ascii")
                for label in host.split(".")
            )
        except (idna.IDNAError, UnicodeError) as exc:
            raise _malformed() from exc

    if not host or any(char in _FORBIDDEN_HOST_CHARACTERS for char in host):
        raise _malformed()
    return host.lower()


def _canonical_path(path: str) -> str:
    segments: list[str] = []
    raw_segments = path[1:].split("/") if path else [""]
    for position, raw_segment in enumerate(raw_segments):
        segment = quote(raw_segment, safe=_PATH_SAFE_CHARACTERS)
        is_last = position == len(raw_segments) - 1
        lowered = segment.lower()
        if lowered in _DOUBLE_DOT_SEGMENTS:
            if segments:
                segments.pop()
            if is_last:
                segments.append("")
        elif lowered in _SINGLE_DOT_SEGMENTS:
            if is_last:
                segments.append("")
        else:
            segments.append(segment)
    return "/" + "/".join(segments)


def extract_hostname(url: str) -> str:
    """Return the canonical hostname of a URL, whatever its scheme."""

    scheme, prepared = _prepare(url)
    if not scheme:
        raise _malformed()
    try:
        parts = urlsplit(prepared)
    except ValueError as exc:
        raise _malformed() from exc
    return _canonical_host(parts)


def normalize_url(url: str, *, max_length: int = MAX_URL_LENGTH) -> str:
    """
    Reduce a URL to the key its likes are counted under.

    The key is the lowercased ASCII hostname followed by the path, unless the
    path is exactly ``/``. Hosts are IDNA-encoded, paths are percent-encoded
    and have ``.``/``..`` segments resolved. Scheme, userinfo, port, query and
    fragment are all dropped, so ``HTTP://Example.COM:8080/a/./b?c#d`` counts
    as ``example.com/a/b``.

    Raises:
        URLNormalizationError: when the URL is too long, unparsable, not
            http(s), or reduces to an empty key.
    """

    if len(url) > max_length:
        raise URLNormalizationError(
            "too_long",
            f"URL exceeds maximum length of {max_length:,} characters",
        )

    scheme, prepared = _prepare(url)
    if scheme not in {"http", "https"}:
        raise URLNormalizationError(
            "invalid_protocol",
            "Invalid protocol. Only http and https are allowed",
        )

    try:
        parts = urlsplit(prepared)
    except ValueError as exc:
        raise _malformed() from exc

    key = _canonical_host(parts)
    path = _canonical_path(parts.path)
    if path != "/":
        key += path

    if not key.strip():
        raise URLNormalizationError("empty", "Processed URL cannot be empty")
    return key

"""Helpers for deriving destination identifiers from URLs.

Hosts are compared in their ASCII (IDNA-encoded) form so that a destination
configured as ``xn--...`` and a request to the Unicode spelling match.
"""

from urllib.parse import urlsplit

import httpx

from origin_breaker.errors import ConfigurationError

_SUPPORTED_SCHEMES = frozenset({"http", "https"})
_DEFAULT_PORTS = {"http": 80, "https": 443}


def _format_origin(scheme: str, host: str, port: int | None) -> str:
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def origin_of(url: str | httpx.URL) -> str:
    """Return the ``scheme://host[:port]`` origin of an outgoing request URL."""
    parsed = url if isinstance(url, httpx.URL) else httpx.URL(url)
    host = parsed.raw_host.decode("ascii").lower()
    return _format_origin(parsed.scheme.lower(), host, parsed.port)


def normalize_destination(value: str) -> str:
    """Validate a configured destination identifier and return its origin.

    Raises:
        ConfigurationError: When ``value`` is not a bare http(s) origin.
    """
    candidate = value.strip()
    parsed = urlsplit(candidate)
    if parsed.scheme.lower() not in _SUPPORTED_SCHEMES:
        raise ConfigurationError(f"destination must use http or https: {value!r}")
    if not parsed.hostname:
        raise ConfigurationError(f"destination must include a host: {value!r}")
    if parsed.username is not None or parsed.password is not None:
        raise ConfigurationError(f"destination must not carry credentials: {value!r}")
    if parsed.path not in ("", "/") or parsed.query or parsed.fragment:
        raise ConfigurationError(
            f"destination must be scheme://host[:port] only: {value!r}"
        )
    try:
        _ = parsed.port
        return origin_of(candidate)
    except (ValueError, httpx.InvalidURL) as error:
        raise ConfigurationError(
            f"destination is not a valid URL: {value!r}"
        ) from error

#!/usr/bin/env python3
"""
Framework-neutral view of an inbound HTTP request.

The pipeline never talks to a web framework directly. The ASGI middleware
(or any other host adapter) builds a GuardRequest and hands it over.

Security Considerations:
- Client identity is a heuristic grouping key, not an authenticated value
- Header names are normalised to lower case on creation
- Body is kept as parsed by the host (dict, list, str or None)
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

# Identity used when no forwarding header or peer address is available
FALLBACK_IDENTITY = "127.0.0.1"

# Max IPv6 textual length plus zone; longer header values are truncated
MAX_IDENTITY_LENGTH = 64


@dataclass
class GuardRequest:
    """Request data inspected by the security pipeline."""

    method: str = "GET"
    url: str = "/"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    query: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    client_host: Optional[str] = None

    def __post_init__(self):
        """Normalise header names."""
        self.headers = {
            str(name).lower(): str(value) for name, value in self.headers.items()
        }
        self.method = (self.method or "GET").upper()
        self.url = self.url or "/"

    @property
    def client_identity(self) -> str:
        """
        Derive the client identity.

        Order: first X-Forwarded-For entry, X-Real-IP, transport peer,
        fixed fallback. A source that is blank after stripping is skipped.
        """
        forwarded_for = _clean_identity(self.headers.get('x-forwarded-for', '').split(',')[0])
        if forwarded_for:
            return forwarded_for

        real_ip = _clean_identity(self.headers.get('x-real-ip', ''))
        if real_ip:
            return real_ip

        client_host = _clean_identity(self.client_host or '')
        if client_host:
            return client_host

        return FALLBACK_IDENTITY

    @property
    def user_agent(self) -> str:
        return self.headers.get('user-agent', '')

    def header(self, name: str, default: str = '') -> str:
        return self.headers.get(name.lower(), default)

    def serialized_body(self) -> str:
        """Body as text, JSON-serialized when structured. Empty body is '{}'."""
        return serialize(self.body if self.body is not None else {})


def serialize(value: Any) -> str:
    """Serialize request-derived data to text for pattern matching."""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return json.dumps(value, default=str, ensure_ascii=False)


def iter_strings(value: Any) -> Iterator[str]:
    """Yield every string key and leaf value of parsed request data."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, bytes):
        yield value.decode('utf-8', errors='replace')
    elif isinstance(value, dict):
        for key, item in value.items():
            yield str(key)
            yield from iter_strings(item)
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            yield from iter_strings(item)
    elif value is not None:
        yield str(value)


def _clean_identity(value: str) -> str:
    # Strip again after truncating so stored identities never end in whitespace
    return value.strip()[:MAX_IDENTITY_LENGTH].strip()

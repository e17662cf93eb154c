from __future__ import annotations

import ipaddress
import os
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse

DEFAULT_ALLOWED_NETS = "127.0.0.1/32,::1/128"
# Liveness probes come from the host/orchestrator, which is often outside the allowlist.
PROBE_PATHS = frozenset({"/api/healthz"})

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_nets(items: Iterable[str]) -> list[Network]:
    nets: list[Network] = []
    for item in items:
        for part in (item or "").split(","):
            s = part.strip()
            if not s:
                continue
            try:
                nets.append(ipaddress.ip_network(s, strict=False))
            except ValueError as exc:
                raise ValueError(f"invalid allowed network: {s}") from exc
    return nets


def client_allowed(host: str, allowed: list[Network]) -> bool:
    if not allowed:
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    # IPv4-mapped IPv6 clients (dual-stack sockets) are matched as IPv4.
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip.version == net.version and ip in net for net in allowed)


class NetworkAllowlistMiddleware(BaseHTTPMiddleware):
    """Reject requests whose client address is outside ``allowed_nets``.

    An empty allowlist admits everyone; an unparseable one rejects everyone
    except the liveness probe with 503 until ``ALLOWED_NETS`` is fixed.
    """

    def __init__(self, app, allowed_nets: Iterable[str], probe_paths: Iterable[str] = PROBE_PATHS):
        super().__init__(app)
        self.allowed: list[Network] = []
        self.allowlist_error: str | None = None
        self.probe_paths = frozenset(probe_paths)
        try:
            self.allowed = parse_nets(allowed_nets)
        except ValueError as exc:
            self.allowlist_error = str(exc)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.probe_paths:
            return await call_next(request)

        if self.allowlist_error:
            return PlainTextResponse(
                f"access denied: allowlist misconfigured ({self.allowlist_error})",
                status_code=503,
            )

        client_host = request.client.host if request.client else ""
        if not client_allowed(client_host, self.allowed):
            return PlainTextResponse(f"access denied: {client_host or 'unknown client'} not allowed", status_code=403)

        return await call_next(request)


def get_allowed_nets() -> list[str]:
    raw = os.environ.get("ALLOWED_NETS", DEFAULT_ALLOWED_NETS)
    return [s.strip() for s in raw.split(",") if s.strip()]

"""slowapi limiter shared by the notification routes.

Clients are keyed by their originating address. Behind the reverse
proxy that is the first X-Forwarded-For hop, not the socket peer.
"""

from fastapi import Request
from slowapi import Limiter

from .config import settings


def client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=client_address, enabled=settings.rate_limit_enabled)

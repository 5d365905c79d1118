from slowapi import Limiter
from starlette.requests import Request

from capgate.config import settings


def get_real_client_ip(request: Request) -> str:
    """Caller identifier for rate limiting: the client's address.

    With ``trust_proxy_headers`` on (the default, for deployments behind a
    reverse proxy) the first X-Forwarded-For hop wins. Otherwise, or when the
    header is absent, the socket peer is used.
    """
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


# Fixed-window limits for operator endpoints; protocol endpoints use the
# token-bucket RateLimiter inside CapService instead.
limiter = Limiter(key_func=get_real_client_ip)

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.settings import settings


def actor_or_remote_address(request: Request) -> str:
    """Bucket staff by actor id so a shared branch IP does not throttle everyone."""
    actor_id = request.headers.get("x-actor-id")
    if actor_id:
        return f"actor:{actor_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=actor_or_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)

__all__ = ["limiter", "actor_or_remote_address"]

"""Redis client construction shared by progress tracking, upload hand-off and locks."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client, enabling TLS for hosted providers.

    Upstash endpoints only accept TLS, so ``redis://`` URLs pointing at them
    are upgraded to ``rediss://`` and certificate verification is relaxed.
    """
    hosted = ".upstash.io" in url
    if hosted and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    client = Redis.from_url(url, **kwargs)

    if url.startswith("rediss://"):
        pool_kwargs = getattr(client.connection_pool, "connection_kwargs", None)
        if pool_kwargs is not None:
            pool_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client

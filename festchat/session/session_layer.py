"""
Session layer - Redis-backed refresh-token store and presence set.

Refresh tokens are tracked by their jti in a per-user list, newest first,
capped at MAX_REFRESH_TOKENS. A refresh token is honoured only while its jti
is still in the list.
"""
from typing import Optional, List, Set
import logging
import redis

logger = logging.getLogger(__name__)

# Redis connection pool and client
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None
_refresh_ttl: int = 7 * 24 * 60 * 60
_max_refresh_tokens: int = 5

ONLINE_USERS_KEY = "presence:online"


def init_redis(
    host: str,
    port: int,
    db: int,
    socket_timeout: float = 5.0,
    refresh_ttl: int = 7 * 24 * 60 * 60,
    max_refresh_tokens: int = 5,
) -> None:
    """Initialize Redis connection pool. Call once at app startup."""
    global _redis_pool, _redis_client, _refresh_ttl, _max_refresh_tokens
    _redis_pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=10,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)
    _refresh_ttl = refresh_ttl
    _max_refresh_tokens = max_refresh_tokens
    logger.info(f"Redis initialized: {host}:{port}/{db}, refresh TTL: {refresh_ttl}s")


def use_client(client: redis.Redis, refresh_ttl: Optional[int] = None, max_refresh_tokens: Optional[int] = None) -> None:
    """Install an already-built client (tests, scripts)."""
    global _redis_client, _refresh_ttl, _max_refresh_tokens
    _redis_client = client
    if refresh_ttl is not None:
        _refresh_ttl = refresh_ttl
    if max_refresh_tokens is not None:
        _max_refresh_tokens = max_refresh_tokens


def get_redis_client() -> redis.Redis:
    """Get Redis client. Raises if not initialized."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_initialized() -> bool:
    return _redis_client is not None


def _refresh_key(user_id: str) -> str:
    return f"refresh_tokens:{user_id}"


# --- Refresh tokens ---


def store_refresh_token(user_id: str, jti: str) -> None:
    """Remember a refresh token id; the oldest ids beyond the cap are evicted."""
    client = get_redis_client()
    key = _refresh_key(user_id)
    pipe = client.pipeline()
    pipe.lpush(key, jti)
    pipe.ltrim(key, 0, _max_refresh_tokens - 1)
    pipe.expire(key, _refresh_ttl)
    pipe.execute()


def has_refresh_token(user_id: str, jti: str) -> bool:
    client = get_redis_client()
    return jti in client.lrange(_refresh_key(user_id), 0, -1)


def list_refresh_tokens(user_id: str) -> List[str]:
    client = get_redis_client()
    return client.lrange(_refresh_key(user_id), 0, -1)


def revoke_refresh_token(user_id: str, jti: str) -> bool:
    """Remove one refresh token id (logout)."""
    client = get_redis_client()
    removed = client.lrem(_refresh_key(user_id), 0, jti)
    if removed > 0:
        logger.info(f"Refresh token revoked for user: {user_id}")
        return True
    return False


def revoke_all_refresh_tokens(user_id: str) -> int:
    client = get_redis_client()
    key = _refresh_key(user_id)
    count = client.llen(key)
    client.delete(key)
    logger.info(f"All refresh tokens revoked for user: {user_id} ({count})")
    return count


# --- Presence ---


def mark_online(user_id: str) -> None:
    get_redis_client().sadd(ONLINE_USERS_KEY, user_id)


def mark_offline(user_id: str) -> None:
    get_redis_client().srem(ONLINE_USERS_KEY, user_id)


def online_user_ids() -> Set[str]:
    return set(get_redis_client().smembers(ONLINE_USERS_KEY))


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Extract JWT token from Authorization header."""
    if not auth_header:
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]

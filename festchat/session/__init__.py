from .session_layer import (
    init_redis,
    use_client,
    get_redis_client,
    is_redis_initialized,
    store_refresh_token,
    has_refresh_token,
    list_refresh_tokens,
    revoke_refresh_token,
    revoke_all_refresh_tokens,
    mark_online,
    mark_offline,
    online_user_ids,
    extract_token,
)

__all__ = [
    "init_redis",
    "use_client",
    "get_redis_client",
    "is_redis_initialized",
    "store_refresh_token",
    "has_refresh_token",
    "list_refresh_tokens",
    "revoke_refresh_token",
    "revoke_all_refresh_tokens",
    "mark_online",
    "mark_offline",
    "online_user_ids",
    "extract_token",
]

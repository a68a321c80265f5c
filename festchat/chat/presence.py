"""
Online presence.

The Redis set is shared by every worker and is the source of truth. When
Redis cannot be reached, the sockets held by this worker are reported.
"""
import logging
import uuid
from typing import List

import redis

from festchat.chat.connection_manager import connection_manager
from festchat.session import mark_offline, mark_online
from festchat.session import online_user_ids as presence_set

logger = logging.getLogger(__name__)


def set_presence(user_id: uuid.UUID, online: bool) -> None:
    try:
        if online:
            mark_online(str(user_id))
        else:
            mark_offline(str(user_id))
    except (redis.RedisError, RuntimeError) as e:
        logger.warning("Presence update for %s skipped: %s", user_id, e)


def online_user_ids() -> List[str]:
    """Sorted ids of connected users."""
    try:
        return sorted(presence_set())
    except (redis.RedisError, RuntimeError) as e:
        logger.warning("Presence set unavailable, using local connections: %s", e)
        return sorted(str(uid) for uid in connection_manager.online_user_ids())

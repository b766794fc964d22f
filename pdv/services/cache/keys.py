"""
Cache key builders and TTL buckets.

Writers and readers build keys through these functions so the strings never
drift apart. Keys for user-owned data always carry the username.
"""

from typing import Optional


class CacheTTL:
    """Named TTL buckets in seconds."""

    SHORT = 60
    MEDIUM = 300
    LONG = 1800
    VERY_LONG = 3600
    SESSION = 86400


class CacheKeys:
    """Namespaced key builders, ``<domain>:<qualifier>...``."""

    STATS = "stats:dashboard"
    HEALTH = "health:status"
    HEALTH_PROBE = "health_check"

    @staticmethod
    def products(username: str) -> str:
        return f"products:all:{username}"

    @staticmethod
    def clients(username: str) -> str:
        return f"clients:all:{username}"

    @staticmethod
    def movements(username: str, query: str = "") -> str:
        return f"movements:{username}:{query}"

    @staticmethod
    def accounts(username: str, query: str = "") -> str:
        return f"accounts:{username}:{query}"

    @staticmethod
    def account(username: str, account_id: int) -> str:
        return f"account:{username}:{account_id}"

    @staticmethod
    def user_session(user_id: int) -> str:
        return f"session:{user_id}"

    @staticmethod
    def user_stats(username: str) -> str:
        return f"user:{username}:stats"

    @staticmethod
    def user_activities(username: str, page: int, limit: int) -> str:
        return f"user:{username}:activities:{page}:{limit}"

    @staticmethod
    def rate_limit(ip: str) -> str:
        return f"rate_limit:{ip}"

    @staticmethod
    def brute_force(ip: str) -> str:
        return f"brute_force:{ip}"

    @staticmethod
    def api_route(
        route: str, method: str, query: str = "", scope: Optional[str] = None
    ) -> str:
        """
        Key for a captured HTTP response.

        ``route`` is the path without the ``/api/`` prefix. The query string
        is appended verbatim, so parameter order matters.
        """
        parts = ["api", route]
        if scope:
            parts.append(scope)
        key = ":".join(parts) + f":{method.upper()}"
        if query:
            key += f"?{query}"
        return key

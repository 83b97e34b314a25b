"""
Cache utilities for the PATS ledger
Standings and leaderboards are derived views; these helpers key,
fill and invalidate them.
"""

from flask import current_app

from pats import cache

ALL_TIME = "all"


def standings_cache_key(session_id):
    return f"standings_session_{session_id}"


def leaderboard_cache_key(month_key=None):
    return f"leaderboard_{month_key or ALL_TIME}"


def cached_view(cache_key, builder, timeout_config, force_refresh=False):
    """
    Return a cached view, rebuilding it when missing or forced

    Args:
        cache_key: Key to store the view under
        builder: Zero-argument callable producing the view
        timeout_config: Config key holding the timeout in seconds
        force_refresh: Skip the cached copy and rebuild
    """
    if not force_refresh:
        result = cache.get(cache_key)
        if result is not None:
            current_app.logger.debug(f"Cache hit for key: {cache_key}")
            return result

    result = builder()
    timeout = current_app.config.get(timeout_config, 60)
    cache.set(cache_key, result, timeout=timeout)
    current_app.logger.debug(f"Cache set for key: {cache_key}")

    return result


def invalidate_session_cache(session_id):
    """Drop cached standings for one session"""
    try:
        cache.delete(standings_cache_key(session_id))
        current_app.logger.debug(f"Standings cache invalidated for session {session_id}")
    except Exception as e:
        current_app.logger.error(f"Failed to invalidate standings cache: {e}")


def invalidate_leaderboard_cache(month_key=None):
    """Drop the all-time leaderboard and, if given, one month's"""
    keys = [leaderboard_cache_key()]
    if month_key:
        keys.append(leaderboard_cache_key(month_key))
    try:
        cache.delete_many(*keys)
        current_app.logger.debug(f"Leaderboard cache invalidated: {keys}")
    except Exception as e:
        current_app.logger.error(f"Failed to invalidate leaderboard cache: {e}")


def invalidate_ledger_views(session):
    """Invalidate everything a ledger mutation for this session can change"""
    invalidate_session_cache(session.id)
    invalidate_leaderboard_cache(session.month_key)


def get_cache_stats():
    """Get cache statistics"""
    return {
        "type": current_app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
        "standings_timeout": current_app.config.get("STANDINGS_CACHE_TIMEOUT", 60),
        "leaderboard_timeout": current_app.config.get("LEADERBOARD_CACHE_TIMEOUT", 60),
    }

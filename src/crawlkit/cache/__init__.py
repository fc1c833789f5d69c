"""Session cache for crawlkit.

Re-exports :class:`SessionCache` so callers can write::

    from crawlkit.cache import SessionCache
"""

from crawlkit.cache.session_cache import SessionCache

__all__ = ["SessionCache"]

"""Infrastructure: the persistent file cache."""

from codewarden.infrastructure.cache import CacheStatistics, FileCache

__all__ = ["CacheStatistics", "FileCache"]

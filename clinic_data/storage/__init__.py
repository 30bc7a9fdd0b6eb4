"""
Storage layer: persistent cache, bundled snapshots and record merging.
"""

from .cache import CacheManager, CacheEntry, CacheError
from .snapshots import SnapshotLoader, SnapshotError
from .merger import merge_doctors, normalize_text, merge_key

__all__ = [
    'CacheManager', 'CacheEntry', 'CacheError',
    'SnapshotLoader', 'SnapshotError',
    'merge_doctors', 'normalize_text', 'merge_key'
]

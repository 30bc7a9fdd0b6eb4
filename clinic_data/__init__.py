"""
Clinic Data

Data-access layer for the clinic website: Archimed API client, persistent
cache, fallback snapshots and doctor record merging.
"""

__version__ = "1.0.0"
__description__ = "Clinic data access layer with API fallbacks and stale-while-revalidate caching"

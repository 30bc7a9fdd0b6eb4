"""
Offline tools that enrich the ProDoctorov snapshot with photos.
"""

from .photo_parser import PhotoParser, ScraperError, update_snapshot_photos
from .image_directory import import_image_directory, split_name_and_specialty

__all__ = [
    'PhotoParser', 'ScraperError', 'update_snapshot_photos',
    'import_image_directory', 'split_name_and_specialty'
]

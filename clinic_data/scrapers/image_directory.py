"""
Import doctors from a directory of photos named "<full name> - <specialty>.jpg".
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Tuple
from dataclasses import dataclass

from .photo_parser import ScraperError
from ..storage.merger import normalize_text
from ..storage.snapshots import read_snapshot_file, write_snapshot_file, DEFAULT_SPECIALTY

IMAGE_EXTENSIONS = re.compile(r'\.(jpe?g|png|webp)$', re.IGNORECASE)
PLACEHOLDER_PHOTO = re.compile(r'no-avatar\.svg$', re.IGNORECASE)
DELIMITERS = (' - ', '- ', ' -')


@dataclass
class ImportStats:
    """Outcome of an image directory import."""
    processed: int = 0
    added: int = 0
    updated_photos: int = 0


def split_name_and_specialty(filename: str) -> Tuple[str, str]:
    """
    Split an image file name into (full name, specialty).

    The rightmost of " - ", "- " and " -" separates the two; without any
    delimiter the whole name (minus extension) is the full name.
    """
    stem = re.sub(r'\.[^.]+$', '', filename)

    split_idx = max(stem.rfind(delimiter) for delimiter in DELIMITERS)
    if split_idx == -1:
        return stem.strip(), ""

    full_name = re.sub(r'[-\s]+$', '', stem[:split_idx].strip())
    skip = 2 if stem[split_idx + 1:split_idx + 2] == ' ' else 1
    specialty = re.sub(r'^[-\s]+', '', stem[split_idx + skip:].strip())
    return full_name, specialty


def list_images(images_dir: Path) -> List[str]:
    return sorted(entry.name for entry in images_dir.iterdir()
                  if entry.is_file() and IMAGE_EXTENSIONS.search(entry.name))


def merge_images(entries: List[dict], filenames: List[str],
                 url_prefix: str = "/img_doctors/") -> Tuple[List[dict], ImportStats]:
    """
    Add or update snapshot entries from image file names.

    New names are appended; existing entries get the photo only when theirs
    is missing or a placeholder, and the specialty only when it is empty.
    """
    results = [dict(entry) for entry in entries]
    by_name: Dict[str, dict] = {normalize_text(entry.get('fullName')): entry for entry in results}
    stats = ImportStats(processed=len(filenames))

    for filename in filenames:
        full_name, specialty = split_name_and_specialty(filename)
        if not full_name:
            continue

        key = normalize_text(full_name)
        photo_path = f"{url_prefix}{filename}"

        item = by_name.get(key)
        if item is None:
            item = {'fullName': full_name, 'specialty': specialty or DEFAULT_SPECIALTY, 'photo': photo_path}
            results.append(item)
            by_name[key] = item
            stats.added += 1
            continue

        photo = item.get('photo')
        if not photo or PLACEHOLDER_PHOTO.search(str(photo)):
            item['photo'] = photo_path
            stats.updated_photos += 1

        if not str(item.get('specialty') or '').strip() and specialty:
            item['specialty'] = specialty

    results.sort(key=lambda entry: normalize_text(entry.get('fullName')))
    return results, stats


def import_image_directory(images_dir: Path, snapshot_path: Path) -> ImportStats:
    """Merge the photos in images_dir into the snapshot file and rewrite it."""
    logger = logging.getLogger(__name__)
    images_dir = Path(images_dir)
    snapshot_path = Path(snapshot_path)

    if not images_dir.is_dir():
        raise ScraperError(f"Images directory not found: {images_dir}")
    if not snapshot_path.exists():
        raise ScraperError(f"JSON not found: {snapshot_path}")

    entries = read_snapshot_file(snapshot_path)
    results, stats = merge_images(entries, list_images(images_dir))
    write_snapshot_file(snapshot_path, results)

    logger.info(f"Processed {stats.processed} images. Added {stats.added} new doctors, "
                f"updated {stats.updated_photos} photos.")
    return stats

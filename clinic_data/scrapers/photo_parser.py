"""
Extract doctor photo URLs from a saved ProDoctorov clinic page and write
them into the secondary snapshot.
"""

import logging
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import urljoin
from dataclasses import dataclass

from bs4 import BeautifulSoup

from ..storage.merger import normalize_text
from ..storage.snapshots import read_snapshot_file, write_snapshot_file

PRODOCTOROV_BASE_URL = "https://prodoctorov.ru"
PROFILE_IMAGE_CLASS = "b-profile-card__img"


class ScraperError(Exception):
    """Raised when scraper input files are missing or unusable."""
    pass


@dataclass
class DoctorPhoto:
    """A doctor's name and photo URL found on a profile card."""
    name: str
    url: str


class PhotoParser:
    """
    Parses profile card images out of a ProDoctorov listing page.
    """

    def __init__(self, base_url: str = PRODOCTOROV_BASE_URL):
        self.base_url = base_url
        self.logger = logging.getLogger(__name__)

    def parse(self, html_content: str) -> List[DoctorPhoto]:
        """
        Find every profile card image with a name.

        The name is the image title, or the part of its alt text before the
        first comma. Relative sources are resolved against the site URL.
        """
        soup = BeautifulSoup(html_content, 'lxml')
        photos = []

        for img in soup.find_all('img', class_=PROFILE_IMAGE_CLASS):
            src = (img.get('src') or '').strip()
            title = (img.get('title') or '').strip()
            alt = img.get('alt') or ''
            if not src or not (title or alt):
                continue

            name = title or alt.split(',')[0].strip()
            url = src if src.startswith('http') else urljoin(self.base_url, src)
            photos.append(DoctorPhoto(name=name, url=url))

        self.logger.debug(f"Found {len(photos)} profile photos")
        return photos

    def photos_by_name(self, html_content: str) -> Dict[str, str]:
        return {normalize_text(photo.name): photo.url for photo in self.parse(html_content)}


def apply_photos(entries: List[dict], photos: Dict[str, str]) -> Tuple[List[dict], int]:
    """Return entries with matching photos replaced, and how many entries now have a photo."""
    updated = []
    for entry in entries:
        url = photos.get(normalize_text(entry.get('fullName')))
        updated.append({**entry, 'photo': url} if url else entry)

    with_photo = sum(1 for entry in updated if entry.get('photo'))
    return updated, with_photo


def update_snapshot_photos(html_path: Path, snapshot_path: Path) -> int:
    """
    Update the secondary snapshot with photo URLs scraped from a saved page.

    Returns:
        Number of snapshot entries that have a photo link
    """
    logger = logging.getLogger(__name__)
    html_path = Path(html_path)
    snapshot_path = Path(snapshot_path)

    if not html_path.exists():
        raise ScraperError(f"HTML not found: {html_path}")
    if not snapshot_path.exists():
        raise ScraperError(f"JSON not found: {snapshot_path}")

    html_content = html_path.read_text(encoding='utf-8')
    photos = PhotoParser().photos_by_name(html_content)

    entries = read_snapshot_file(snapshot_path)
    updated, with_photo = apply_photos(entries, photos)
    write_snapshot_file(snapshot_path, updated)

    logger.info(f"Updated {with_photo} photo links in {snapshot_path.name}")
    return with_photo

"""
Bundled JSON snapshots used when the live API is unavailable.

- primary: an export of Archimed doctor records (doctors.json)
- secondary: doctors scraped from ProDoctorov (prodoctorov.json), mapped
  into Archimed-shaped records
- mock datasets: last-resort doctors, services and branches
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..archimed.models import Record, make_doctor
from ..utils.config import SnapshotConfig

DATA_DIRECTORY = Path(__file__).resolve().parent.parent / 'data'

SECONDARY_ID_OFFSET = 100000
DEFAULT_SPECIALTY = "Врач"
DEFAULT_DEGREE = "Без степени"


class SnapshotError(Exception):
    """Raised when a snapshot file is missing or has an unexpected format."""
    pass


def extract_records(payload: Any) -> Optional[List[Any]]:
    """Accept a bare list or a {"data": [...]} envelope; None for anything else."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get('data'), list):
        return payload['data']
    return None


def read_snapshot_file(path: Path) -> List[Any]:
    """Read a snapshot file and return its records."""
    path = Path(path)
    if not path.exists():
        raise SnapshotError(f"Snapshot not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        # ValueError covers JSONDecodeError and UnicodeDecodeError
        raise SnapshotError(f"Cannot read snapshot {path}: {e}") from e

    records = extract_records(payload)
    if records is None:
        raise SnapshotError(f"Unexpected JSON format in {path}")
    return records


def write_snapshot_file(path: Path, records: List[Any]):
    """Write records as pretty-printed UTF-8 JSON."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(records, f, ensure_ascii=False, indent=2)
        f.write('\n')


class SnapshotLoader:
    """Loads the bundled fallback datasets."""

    def __init__(self, config: Optional[SnapshotConfig] = None):
        self.config = config or SnapshotConfig()
        self.logger = logging.getLogger(__name__)

    def _path(self, configured: Optional[str], default_name: str) -> Path:
        return Path(configured) if configured else DATA_DIRECTORY / default_name

    @property
    def primary_path(self) -> Path:
        return self._path(self.config.primary, 'doctors.json')

    @property
    def secondary_path(self) -> Path:
        return self._path(self.config.secondary, 'prodoctorov.json')

    def load_primary(self) -> List[Record]:
        """Load the primary doctors snapshot. Raises SnapshotError if it cannot be read."""
        doctors = read_snapshot_file(self.primary_path)
        self.logger.debug(f"Loaded {len(doctors)} doctors from {self.primary_path}")
        return doctors

    def load_secondary(self) -> List[Record]:
        """Load the ProDoctorov snapshot mapped to doctor records; [] if unavailable."""
        try:
            entries = read_snapshot_file(self.secondary_path)
        except SnapshotError as e:
            self.logger.debug(f"Secondary snapshot unavailable: {e}")
            return []

        return [self.map_secondary_entry(entry, index)
                for index, entry in enumerate(entries)
                if isinstance(entry, dict) and entry.get('fullName')]

    def map_secondary_entry(self, item: Dict[str, Any], index: int) -> Record:
        """Convert one scraped entry into an Archimed-shaped doctor record."""
        parts = str(item.get('fullName', '')).split()
        last_name, first_name, middle_name = (parts + ['', '', ''])[:3]

        type_name = item.get('specialty') or DEFAULT_SPECIALTY
        extra_types = item.get('extraSpecialties')
        if not isinstance(extra_types, list):
            extra_types = []

        info_lines = []
        if item.get('experienceStartYear'):
            info_lines.append(f"Врачебный стаж с {item['experienceStartYear']} г.")
        if extra_types:
            info_lines.append(f"Смежные специальности: {', '.join(extra_types)}")

        return make_doctor(
            id=SECONDARY_ID_OFFSET + index,
            name=last_name,
            name1=first_name,
            name2=middle_name,
            type=type_name,
            info='\n'.join(info_lines),
            branch=self.config.default_branch,
            category=item.get('category') or type_name,
            scientific_degree=item.get('scientific_degree') or DEFAULT_DEGREE,
            photo=item.get('photo') or None,
            address=self.config.default_address,
            building_name=self.config.default_building,
            building_web_name=self.config.default_building,
            types=[{'id': 0, 'name': type_name}] +
                  [{'id': i + 1, 'name': name} for i, name in enumerate(extra_types)]
        )

    def _load_mock(self, configured: Optional[str], default_name: str) -> List[Record]:
        path = self._path(configured, default_name)
        try:
            return read_snapshot_file(path)
        except SnapshotError as e:
            self.logger.error(f"Mock dataset unavailable: {e}")
            return []

    def load_mock_doctors(self) -> List[Record]:
        return self._load_mock(self.config.mock_doctors, 'mock_doctors.json')

    def load_mock_services(self) -> List[Record]:
        return self._load_mock(self.config.mock_services, 'mock_services.json')

    def load_mock_branches(self) -> List[Record]:
        return self._load_mock(self.config.mock_branches, 'mock_branches.json')

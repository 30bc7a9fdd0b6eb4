"""
Data shapes exchanged with the Archimed API.

Doctor, service, branch and other reference records are kept as the plain
dicts the API returns, since their shape is owned by the upstream service.
Request payloads and paginated responses get dataclasses.
"""

import math
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, asdict

Record = Dict[str, Any]

DOCTOR_FIELDS: Dict[str, Any] = {
    'id': 0,
    'name': '',
    'name1': '',
    'name2': '',
    'type': '',
    'code': '',
    'max_time': '30',
    'phone': '',
    'snils': '',
    'info': '',
    'zone_id': 0,
    'zone': '',
    'branch_id': 0,
    'branch': '',
    'category_id': 0,
    'category': '',
    'scientific_degree_id': 0,
    'scientific_degree': '',
    'user_id': 0,
    'photo': None,
    'address': '',
    'building_name': '',
    'building_web_name': '',
    'primary_type_id': 0,
    'types': [],
}


def make_doctor(**fields) -> Record:
    """Build a doctor record with every field the API returns, filling defaults."""
    record = {key: (list(value) if isinstance(value, list) else value)
              for key, value in DOCTOR_FIELDS.items()}
    record.update(fields)
    return record


def _as_int(value: Any) -> int:
    """Coerce a numeric field from an upstream response; 0 when missing or invalid."""
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass
class Page:
    """One page of a list endpoint."""
    data: List[Record] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 100

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 1
        return math.ceil(self.total / self.limit)

    @classmethod
    def from_response(cls, payload: Any, default_limit: int = 100) -> 'Page':
        """Normalize a list endpoint response (bare list or {"data": [...]} envelope)."""
        if isinstance(payload, list):
            return cls(data=payload, total=len(payload), page=1, limit=default_limit)

        if not isinstance(payload, dict):
            return cls(limit=default_limit)

        data = payload.get('data')
        if not isinstance(data, list):
            data = []

        return cls(
            data=data,
            total=_as_int(payload.get('total')) or len(data),
            page=_as_int(payload.get('page')) or 1,
            limit=_as_int(payload.get('limit')) or default_limit
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AppointmentData:
    """Appointment request as submitted by the site's booking form."""
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    comments: Optional[str] = None
    service_id: Optional[int] = None
    doctor_id: Optional[int] = None

    def to_payload(self, drop_unset: bool = False) -> Dict[str, Any]:
        """Convert to the /talons request body."""
        payload = asdict(self)
        if drop_unset:
            payload = {key: value for key, value in payload.items() if value is not None}
        return payload


@dataclass
class AppointmentFilters:
    """Query filters for listing appointments."""
    doctor_id: Optional[int] = None
    service_id: Optional[int] = None
    status_id: Optional[int] = None
    page: Optional[int] = None
    limit: Optional[int] = None

    def to_params(self) -> Dict[str, str]:
        """Only filters that are set (and non-zero) become query parameters."""
        return {key: str(value) for key, value in asdict(self).items() if value}

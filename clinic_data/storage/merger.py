"""
Doctor record merging and doctor/service linking by normalized names.

Names and specialties come from several sources (Archimed, the public
gateway, scraped ProDoctorov data, hand-made image file names) that disagree
on case, spacing and the ё/е spelling, so every comparison goes through
normalize_text().
"""

import copy
import logging
import re
from typing import Any, Dict, Iterable, List, Set

from ..archimed.models import Record

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')

# Fields filled from a secondary record when the primary one has them empty
FILLABLE_FIELDS = (
    'photo',
    'info',
    'category',
    'scientific_degree',
    'phone',
    'address',
    'building_name',
    'building_web_name',
    'branch',
    'zone',
)


def normalize_text(value: Any) -> str:
    """Lower-case, fold ё into е, collapse whitespace."""
    if not value:
        return ""
    text = str(value).lower().replace('ё', 'е')
    return _WHITESPACE.sub(' ', text).strip()


def tokenize(value: Any) -> List[str]:
    return [token for token in normalize_text(value).split(' ') if token]


def merge_key(doctor: Record) -> str:
    """Key matching the same person across sources: last|first|middle name."""
    return '|'.join(normalize_text(doctor.get(part)) for part in ('name', 'name1', 'name2'))


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _merge_into(target: Record, extra: Record):
    for field in FILLABLE_FIELDS:
        if _is_empty(target.get(field)) and not _is_empty(extra.get(field)):
            target[field] = extra[field]

    types = list(target.get('types') or [])
    seen = {normalize_text(t.get('name')) for t in types if isinstance(t, dict)}
    for doctor_type in extra.get('types') or []:
        if not isinstance(doctor_type, dict):
            continue
        type_name = normalize_text(doctor_type.get('name'))
        if type_name and type_name not in seen:
            seen.add(type_name)
            types.append(copy.deepcopy(doctor_type))
    target['types'] = types

    if _is_empty(target.get('type')) and not _is_empty(extra.get('type')):
        target['type'] = extra['type']


def merge_doctors(primary: List[Record], extra: List[Record]) -> List[Record]:
    """
    Merge two doctor lists into one, deduplicated by merge key.

    Primary records keep their position and their non-empty fields; empty
    fields are filled from later records with the same key. Records with an
    unseen key are appended in order. Inputs are not modified.
    """
    by_key: Dict[str, Record] = {}
    merged: List[Record] = []
    collapsed = 0

    for doctor in list(primary) + list(extra):
        key = merge_key(doctor)
        if key == '||':
            # No name at all; nothing to match on
            merged.append(copy.deepcopy(doctor))
            continue

        if key in by_key:
            _merge_into(by_key[key], doctor)
            collapsed += 1
            continue

        record = copy.deepcopy(doctor)
        by_key[key] = record
        merged.append(record)

    logger.debug(f"Merged {len(primary)} + {len(extra)} doctors into {len(merged)} "
                 f"({collapsed} duplicates collapsed)")
    return merged


def doctor_tokens(doctor: Record) -> Set[str]:
    tokens = set(tokenize(doctor.get('type')))
    for doctor_type in doctor.get('types') or []:
        if isinstance(doctor_type, dict):
            tokens.update(tokenize(doctor_type.get('name')))
    return tokens


def service_tokens(service: Record) -> Set[str]:
    return set(tokenize(service.get('group_name'))) | set(tokenize(service.get('name')))


def link_services_to_doctors(doctors: Iterable[Record], services: Iterable[Record]) -> List[Record]:
    """Copy each doctor with a 'services' list of services sharing a token with its specialties."""
    indexed = [(service, service_tokens(service)) for service in services]
    result = []
    for doctor in doctors:
        tokens = doctor_tokens(doctor)
        matched = [service for service, svc_tokens in indexed if tokens & svc_tokens]
        result.append({**doctor, 'services': matched})
    return result


def link_doctors_to_services(services: Iterable[Record], doctors: Iterable[Record]) -> List[Record]:
    """Copy each service with a 'doctors' list of doctors sharing a token with it."""
    indexed = [(doctor, doctor_tokens(doctor)) for doctor in doctors]
    result = []
    for service in services:
        tokens = service_tokens(service)
        matched = [doctor for doctor, doc_tokens in indexed if tokens & doc_tokens]
        result.append({**service, 'doctors': matched})
    return result

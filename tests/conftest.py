"""
Shared fixtures and fakes for the clinic data tests.
"""

import json
from pathlib import Path

import pytest

from clinic_data.archimed.models import make_doctor
from clinic_data.utils.config import Config, SnapshotConfig


class FakeResponse:
    """Stands in for an aiohttp response inside `async with`."""

    def __init__(self, status=200, body=None, text=None):
        self.status = status
        if text is not None:
            self._text = text
        elif body is not None:
            self._text = json.dumps(body, ensure_ascii=False)
        else:
            self._text = ''

    async def text(self):
        return self._text


class _RequestContext:
    def __init__(self, handler, call):
        self.handler = handler
        self.call = call

    async def __aenter__(self):
        return self.handler(self.call)

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Minimal aiohttp.ClientSession replacement.

    `handler` receives a dict describing the call (method, url, params, json,
    headers) and returns a FakeResponse or raises.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.closed = False

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        call = {'method': method, 'url': url, 'params': params, 'json': json,
                'headers': headers, 'timeout': timeout}
        self.calls.append(call)
        return _RequestContext(self.handler, call)

    def get(self, url, params=None, headers=None, timeout=None):
        return self.request('GET', url, params=params, headers=headers, timeout=timeout)

    async def close(self):
        self.closed = True


def doctor(last, first, middle, specialty, **fields):
    return make_doctor(name=last, name1=first, name2=middle, type=specialty,
                       types=[{'id': 0, 'name': specialty}], **fields)


@pytest.fixture
def snapshot_dir(tmp_path) -> Path:
    """Directory with small primary, secondary and mock snapshots."""
    directory = tmp_path / 'data'
    directory.mkdir()

    primary = [
        doctor('Монгуш', 'Аяна', 'Сергеевна', 'Терапевт', id=12),
        doctor('Федорова', 'Елена', 'Павловна', 'Кардиолог', id=23),
    ]
    secondary = [
        {'fullName': 'Монгуш Аяна Сергеевна', 'specialty': 'Терапевт',
         'photo': 'https://prodoctorov.ru/media/mongush.jpg', 'experienceStartYear': 2008},
        {'fullName': 'Фёдорова Елена Павловна', 'specialty': 'Кардиолог',
         'photo': 'https://prodoctorov.ru/media/fedorova.jpg'},
        {'fullName': 'Сат Орлан Борисович', 'specialty': 'Хирург',
         'extraSpecialties': ['Флеболог']},
    ]
    mock_doctors = [doctor('Иванова', 'Мария', 'Петровна', 'Терапевт', id=1)]
    mock_services = [{'id': 1, 'name': 'Приём терапевта', 'group_name': 'Терапевт'}]
    mock_branches = [{'id': 1, 'name': 'Клиника Алдан'}]

    for name, records in [('doctors.json', primary), ('prodoctorov.json', secondary),
                          ('mock_doctors.json', mock_doctors), ('mock_services.json', mock_services),
                          ('mock_branches.json', mock_branches)]:
        (directory / name).write_text(json.dumps(records, ensure_ascii=False), encoding='utf-8')

    return directory


@pytest.fixture
def config(tmp_path, snapshot_dir) -> Config:
    """Config with a file cache and snapshots under tmp_path."""
    config = Config()
    config.api.token = ''
    config.api.mock_appointment_delay = 0
    config.cache.file = {'directory': str(tmp_path / 'cache')}
    config.snapshots = SnapshotConfig(
        primary=str(snapshot_dir / 'doctors.json'),
        secondary=str(snapshot_dir / 'prodoctorov.json'),
        mock_doctors=str(snapshot_dir / 'mock_doctors.json'),
        mock_services=str(snapshot_dir / 'mock_services.json'),
        mock_branches=str(snapshot_dir / 'mock_branches.json'),
    )
    return config

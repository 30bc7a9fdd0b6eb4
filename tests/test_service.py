"""
Unit tests for ClinicDataService: fallback chain, stale-while-revalidate and
appointment handling.
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from clinic_data.archimed.client import ArchimedClient, ArchimedError, ArchimedHTTPError
from clinic_data.archimed.models import AppointmentData, AppointmentFilters, Page
from clinic_data.archimed.service import ClinicDataService
from clinic_data.storage.cache import CacheManager, CacheEntry

from conftest import doctor


def api_doctors(count, prefix='Врач'):
    return [doctor(f'{prefix}{i}', 'Имя', 'Отчество', 'Терапевт', id=i) for i in range(count)]


@pytest.fixture
def client():
    client = MagicMock(spec=ArchimedClient)
    client.fetch_public_doctors = AsyncMock(side_effect=ArchimedError('gateway down'))
    client.fetch_all_doctors = AsyncMock(return_value=[])
    client.get_services = AsyncMock(side_effect=ArchimedError('api down'))
    client.close = AsyncMock()
    return client


@pytest.fixture
def cache(config):
    return CacheManager(config.cache)


@pytest.fixture
def service(config, client, cache):
    return ClinicDataService(config, client, cache)


class TestDoctorsFallbackChain:
    @pytest.mark.asyncio
    async def test_public_gateway_replaced_by_larger_api_list(self, service, client, cache, config):
        client.fetch_public_doctors = AsyncMock(return_value=api_doctors(12, 'Шлюз'))
        client.fetch_all_doctors = AsyncMock(return_value=api_doctors(15))

        doctors = await service.get_doctors()

        assert len(doctors) == 15
        assert doctors[0]['name'] == 'Врач0'
        assert await cache.read(config.cache.doctors_key, 60) == doctors

    @pytest.mark.asyncio
    async def test_public_gateway_kept_when_api_fails(self, service, client):
        client.fetch_public_doctors = AsyncMock(return_value=api_doctors(12, 'Шлюз'))
        client.fetch_all_doctors = AsyncMock(side_effect=ArchimedError('boom'))

        doctors = await service.get_doctors()

        assert len(doctors) == 12
        assert doctors[0]['name'] == 'Шлюз0'

    @pytest.mark.asyncio
    async def test_api_used_when_gateway_down(self, service, client):
        client.fetch_all_doctors = AsyncMock(return_value=api_doctors(20))

        doctors = await service.get_doctors()

        assert len(doctors) == 20
        assert service.monitor.last_sources['doctors'] == 'api'

    @pytest.mark.asyncio
    async def test_small_api_list_is_enriched_from_secondary(self, service, client):
        client.fetch_all_doctors = AsyncMock(return_value=api_doctors(2))

        doctors = await service.get_doctors()

        # 2 from the API plus 3 unmatched ProDoctorov doctors
        assert len(doctors) == 5
        assert doctors[2]['id'] == 100000

    @pytest.mark.asyncio
    async def test_primary_snapshot_merged_with_secondary(self, service):
        doctors = await service.get_doctors()

        names = [d['name'] for d in doctors]
        assert names == ['Монгуш', 'Федорова', 'Сат']
        assert doctors[0]['id'] == 12
        assert doctors[0]['photo'] == 'https://prodoctorov.ru/media/mongush.jpg'
        assert doctors[1]['photo'] == 'https://prodoctorov.ru/media/fedorova.jpg'
        assert service.monitor.last_sources['doctors'] == 'snapshot'

    @pytest.mark.asyncio
    async def test_mock_doctors_as_last_resort(self, config, client, cache, tmp_path):
        config.snapshots.primary = str(tmp_path / 'missing.json')
        service = ClinicDataService(config, client, cache)

        doctors = await service.get_doctors()

        assert doctors[0]['name'] == 'Иванова'
        assert len(doctors) == 4
        assert service.monitor.last_sources['doctors'] == 'mock'

    @pytest.mark.asyncio
    async def test_undecodable_primary_snapshot_falls_through_to_mock(self, config, client, cache, tmp_path):
        broken = tmp_path / 'broken.json'
        broken.write_bytes(b'[\xff]')
        config.snapshots.primary = str(broken)
        service = ClinicDataService(config, client, cache)

        doctors = await service.get_doctors()

        assert doctors[0]['name'] == 'Иванова'
        assert service.monitor.last_sources['doctors'] == 'mock'

    @pytest.mark.asyncio
    async def test_undecodable_cache_slot_is_a_miss(self, service, cache, config):
        path = cache.backend._path(config.cache.doctors_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b'\xff\xfe')

        doctors = await service.get_doctors()

        assert [d['name'] for d in doctors] == ['Монгуш', 'Федорова', 'Сат']


class TestStaleWhileRevalidate:
    @pytest.mark.asyncio
    async def test_memory_hit_refreshes_in_background(self, service, client, cache, config):
        service.doctors_cache = api_doctors(3, 'Старый')
        client.fetch_all_doctors = AsyncMock(return_value=api_doctors(30))

        doctors = await service.get_doctors()
        assert doctors[0]['name'] == 'Старый0'

        await service.wait_for_refreshes()
        assert len(service.get_doctors_cache()) == 30
        assert len(await cache.read(config.cache.doctors_key, 60)) == 30

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_stale_data(self, service, client):
        stale = api_doctors(3, 'Старый')
        service.doctors_cache = stale
        client.fetch_all_doctors = AsyncMock(return_value=[])

        await service.get_doctors()
        await service.wait_for_refreshes()

        assert service.get_doctors_cache() is stale

    @pytest.mark.asyncio
    async def test_single_refresh_in_flight(self, service, client):
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return api_doctors(1)

        service.doctors_cache = api_doctors(2)
        client.fetch_all_doctors = AsyncMock(side_effect=slow_fetch)

        await service.get_doctors()
        await service.get_doctors()
        release.set()
        await service.wait_for_refreshes()

        assert client.fetch_all_doctors.await_count == 1

    @pytest.mark.asyncio
    async def test_stale_storage_served_and_revalidated(self, service, client, cache, config):
        old = CacheEntry(data=api_doctors(4, 'Кэш'), timestamp=(time.time() - 5 * 86400) * 1000)
        await cache.backend.set_raw(config.cache.doctors_key, old.to_json())
        client.fetch_all_doctors = AsyncMock(return_value=api_doctors(40))

        doctors = await service.get_doctors()
        assert doctors[0]['name'] == 'Кэш0'
        client.fetch_public_doctors.assert_not_called()

        await service.wait_for_refreshes()
        assert len(service.get_doctors_cache()) == 40

    @pytest.mark.asyncio
    async def test_legacy_data_envelope_is_normalized(self, service, cache, config):
        await cache.write(config.cache.doctors_key, {'data': api_doctors(2, 'Старый')})

        await service.initialize()

        assert [d['name'] for d in service.get_doctors_cache()] == ['Старый0', 'Старый1']
        assert isinstance(await cache.read(config.cache.doctors_key, 60), list)

    @pytest.mark.asyncio
    async def test_initialize_warms_services(self, service, cache, config):
        await cache.write(config.cache.services_key, [{'id': 1, 'name': 'УЗИ'}])
        await service.initialize()
        assert service.get_services_cache() == [{'id': 1, 'name': 'УЗИ'}]


class TestServices:
    @pytest.mark.asyncio
    async def test_api_services_are_cached(self, service, client, cache, config):
        client.get_services = AsyncMock(return_value=[{'id': 3, 'name': 'Приём'}])

        assert await service.get_services() == [{'id': 3, 'name': 'Приём'}]
        assert await cache.read(config.cache.services_key, 60) == [{'id': 3, 'name': 'Приём'}]

    @pytest.mark.asyncio
    async def test_mock_services_on_failure(self, service, cache, config):
        services = await service.get_services()

        assert services[0]['name'] == 'Приём терапевта'
        assert await cache.read(config.cache.services_key, 60) == services

    @pytest.mark.asyncio
    async def test_doctors_with_services(self, service):
        linked = await service.get_doctors_with_services()

        therapist = next(d for d in linked if d['name'] == 'Монгуш')
        surgeon = next(d for d in linked if d['name'] == 'Сат')
        assert [s['id'] for s in therapist['services']] == [1]
        assert surgeon['services'] == []

    @pytest.mark.asyncio
    async def test_services_with_doctors(self, service):
        linked = await service.get_services_with_doctors()
        assert [d['name'] for d in linked[0]['doctors']] == ['Монгуш']


class TestReferenceData:
    @pytest.mark.asyncio
    async def test_empty_lists_on_failure(self, service, client):
        for name in ('get_zones', 'get_scientific_degrees', 'get_appointment_statuses',
                     'get_services_by_group'):
            setattr(client, name, AsyncMock(side_effect=ArchimedError('down')))

        assert await service.get_zones() == []
        assert await service.get_scientific_degrees() == []
        assert await service.get_appointment_statuses() == []
        assert await service.get_services_by_group(2) == []

    @pytest.mark.asyncio
    async def test_mock_branches_on_failure(self, service, client):
        client.get_branches = AsyncMock(side_effect=ArchimedError('down'))
        assert await service.get_branches() == [{'id': 1, 'name': 'Клиника Алдан'}]

    @pytest.mark.asyncio
    async def test_categories_disabled(self, service, client):
        client.get_categories = AsyncMock(return_value=[{'id': 1}])
        assert await service.get_categories() == []
        client.get_categories.assert_not_called()

    @pytest.mark.asyncio
    async def test_categories_enabled_swallow_errors(self, service, client, config):
        config.api.categories_enabled = True
        client.get_categories = AsyncMock(side_effect=ArchimedHTTPError('404', status_code=404))
        assert await service.get_categories() == []

    @pytest.mark.asyncio
    async def test_single_record_errors_propagate(self, service, client):
        client.get_doctor = AsyncMock(side_effect=ArchimedHTTPError('404', status_code=404))
        client.get_appointment_status = AsyncMock(side_effect=ArchimedError('down'))

        with pytest.raises(ArchimedHTTPError):
            await service.get_doctor(1)
        with pytest.raises(ArchimedError):
            await service.get_appointment_status(2)


class TestAppointments:
    @pytest.fixture
    def booking(self):
        return AppointmentData(patient_name='Ооржак Алексей', patient_phone='+79990000000',
                               preferred_date='2026-11-02', preferred_time='10:30',
                               service_id=3, doctor_id=17)

    @pytest.mark.asyncio
    async def test_simulated_without_token(self, service, client, booking):
        client.create_appointment = AsyncMock()

        appointment = await service.create_appointment(booking)

        client.create_appointment.assert_not_called()
        assert 0 <= appointment['id'] < 1000
        assert appointment['status_id'] == 1
        assert appointment['patient_name'] == 'Ооржак Алексей'
        assert appointment['created_at'] == appointment['updated_at']

    @pytest.mark.asyncio
    async def test_posted_with_token(self, service, client, config, booking):
        config.api.token = 'secret'
        client.create_appointment = AsyncMock(return_value={'id': 501})

        assert await service.create_appointment(booking) == {'id': 501}
        payload = client.create_appointment.call_args.args[0]
        assert payload['doctor_id'] == 17
        assert payload['comments'] is None

    @pytest.mark.asyncio
    async def test_update_drops_unset_fields(self, service, client):
        client.update_appointment = AsyncMock(return_value={'id': 8})

        await service.update_appointment(8, AppointmentData(preferred_time='12:00'))

        client.update_appointment.assert_awaited_once_with(8, {'preferred_time': '12:00'})

    @pytest.mark.asyncio
    async def test_filters_become_params(self, service, client):
        client.get_appointments = AsyncMock(return_value=Page())

        await service.get_appointments(AppointmentFilters(doctor_id=17, page=2))

        client.get_appointments.assert_awaited_once_with({'doctor_id': '17', 'page': '2'})

    @pytest.mark.asyncio
    async def test_empty_page_on_failure(self, service, client):
        client.get_appointments = AsyncMock(side_effect=ArchimedError('down'))

        page = await service.get_appointments()

        assert page == Page(data=[], total=0, page=1, limit=100)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_prefetch_all_never_raises(self, service, client):
        client.fetch_all_doctors = AsyncMock(return_value=api_doctors(11))

        await service.prefetch_all()

        assert len(service.get_doctors_cache()) == 11
        assert service.get_services_cache()[0]['name'] == 'Приём терапевта'

    @pytest.mark.asyncio
    async def test_close_cancels_refreshes(self, service, client):
        never = asyncio.Event()

        async def hang():
            await never.wait()

        service.doctors_cache = api_doctors(1)
        client.fetch_all_doctors = AsyncMock(side_effect=hang)
        await service.get_doctors()

        await service.close()

        client.close.assert_awaited_once()
        assert service._refresh_tasks == {}

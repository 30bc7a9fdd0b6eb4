"""
Clinic data service: the fallback chain in front of the Archimed API.

Doctors and services are served stale-while-revalidate: whatever is in
memory or in the persistent cache is returned at once while a background
task refreshes it from the API. With nothing cached, sources are tried in
order until one yields data, ending with bundled snapshots and mock data.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .client import ArchimedClient, ArchimedError
from .models import AppointmentData, AppointmentFilters, Page, Record
from ..storage.cache import CacheManager
from ..storage.merger import merge_doctors, link_services_to_doctors, link_doctors_to_services
from ..storage.snapshots import SnapshotLoader, SnapshotError
from ..utils.config import Config
from ..utils.logger import get_clinic_logger
from ..utils.monitoring import get_monitor


class ClinicDataService:
    """
    Facade used by the site: cached doctors and services, reference data
    and appointment operations.
    """

    def __init__(self, config: Config, client: ArchimedClient,
                 cache: CacheManager, snapshots: Optional[SnapshotLoader] = None):
        self.config = config
        self.client = client
        self.cache = cache
        self.snapshots = snapshots or SnapshotLoader(config.snapshots)

        self.logger = get_clinic_logger(__name__)
        self.monitor = get_monitor()

        self.doctors_cache: List[Record] = []
        self.services_cache: List[Record] = []
        self._refresh_tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(cls, config: Config) -> 'ClinicDataService':
        return cls(config, ArchimedClient.from_config(config.api), CacheManager(config.cache))

    async def initialize(self):
        """Warm the in-memory lists from the persistent cache, stale entries included."""
        doctors = await self._read_cached_doctors()
        if doctors:
            self.logger.log_source_event(logging.INFO, 'cache', f"Loaded doctors from storage: {len(doctors)}")
            self.doctors_cache = doctors

        services = await self.cache.read(self.config.cache.services_key, self.config.cache.services_ttl)
        if isinstance(services, list) and services:
            self.logger.log_source_event(logging.INFO, 'cache', f"Loaded services from storage: {len(services)}")
            self.services_cache = services

    async def close(self):
        """Cancel background refreshes and release connections."""
        for task in self._refresh_tasks.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._refresh_tasks.values(), return_exceptions=True)
        self._refresh_tasks.clear()

        await self.client.close()
        await self.cache.close()

    # Cache helpers

    def get_doctors_cache(self) -> List[Record]:
        return self.doctors_cache

    def get_services_cache(self) -> List[Record]:
        return self.services_cache

    async def _read_cached_doctors(self) -> List[Record]:
        """Read the doctors slot, unwrapping the legacy {"data": [...]} payload shape."""
        key = self.config.cache.doctors_key
        cached = await self.cache.read(key, self.config.cache.doctors_ttl)

        if isinstance(cached, list):
            return cached
        if isinstance(cached, dict) and isinstance(cached.get('data'), list):
            doctors = cached['data']
            self.logger.debug(f"Normalized cached doctors from .data: {len(doctors)}")
            await self.cache.write(key, doctors)
            return doctors
        return []

    # Background refresh (stale-while-revalidate)

    def _schedule_refresh(self, name: str, refresh: Callable[[], Awaitable[None]]):
        """Start a refresh task unless one for the same dataset is still running."""
        running = self._refresh_tasks.get(name)
        if running is not None and not running.done():
            return
        self._refresh_tasks[name] = asyncio.create_task(refresh())

    async def wait_for_refreshes(self):
        """Wait until the background refreshes started so far have finished."""
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks.values(), return_exceptions=True)

    async def _refresh_doctors(self):
        try:
            doctors = await self.client.fetch_all_doctors()
        except ArchimedError as e:
            self.logger.debug(f"Doctors refresh failed, keeping stale data: {e}")
            return

        if doctors:
            self.doctors_cache = doctors
            await self.cache.write(self.config.cache.doctors_key, doctors)
            self.logger.log_source_event(logging.DEBUG, 'api', f"Doctors refreshed: {len(doctors)}")

    async def _refresh_services(self):
        try:
            services = await self.client.get_services()
        except ArchimedError as e:
            self.logger.debug(f"Services refresh failed, keeping stale data: {e}")
            return

        if services:
            self.services_cache = services
            await self.cache.write(self.config.cache.services_key, services)
            self.logger.log_source_event(logging.DEBUG, 'api', f"Services refreshed: {len(services)}")

    # Doctors

    async def get_doctors(self) -> List[Record]:
        """Return doctors from the first source in the fallback chain that has any."""
        if self.doctors_cache:
            self.logger.debug(f"Returning in-memory doctors: {len(self.doctors_cache)}")
            self._schedule_refresh('doctors', self._refresh_doctors)
            self.monitor.record_source_used('doctors', 'memory')
            return self.doctors_cache

        cached = await self._read_cached_doctors()
        if cached:
            self.logger.log_source_event(logging.INFO, 'cache', f"Loading doctors from storage: {len(cached)}")
            self.doctors_cache = cached
            self._schedule_refresh('doctors', self._refresh_doctors)
            self.monitor.record_source_used('doctors', 'cache')
            return self.doctors_cache

        self.logger.info("No cached doctors, trying public gateway, Archimed API, then snapshots")

        sources = [
            ('public', self._doctors_from_public),
            ('api', self._doctors_from_api),
            ('snapshot', self._doctors_from_primary_snapshot),
            ('mock', self._doctors_from_mock),
        ]

        doctors: List[Record] = []
        source = 'none'
        for source, loader in sources:
            try:
                doctors = await loader()
            except (ArchimedError, SnapshotError) as e:
                self.logger.log_source_event(logging.WARNING, source, f"Doctors source failed: {e}")
                continue
            if doctors:
                break
            self.logger.log_source_event(logging.INFO, source, "Doctors source returned no data")

        if source == 'mock' or len(doctors) < self.config.snapshots.min_doctors:
            doctors = self._enrich_with_secondary(doctors)

        self.logger.log_source_event(logging.INFO, source, f"Using doctors dataset, count: {len(doctors)}")
        self.monitor.record_source_used('doctors', source)
        self.doctors_cache = doctors
        await self.cache.write(self.config.cache.doctors_key, doctors)
        return self.doctors_cache

    async def _doctors_from_public(self) -> List[Record]:
        """Public gateway, replaced by the full API list when that one is larger."""
        public_doctors = await self.client.fetch_public_doctors()
        if not public_doctors:
            return []

        try:
            api_doctors = await self.client.fetch_all_doctors()
        except ArchimedError as e:
            self.logger.warning(f"Failed to enrich doctors from Archimed API, using public data: {e}")
            return public_doctors

        if len(api_doctors) > len(public_doctors):
            return api_doctors
        return public_doctors

    async def _doctors_from_api(self) -> List[Record]:
        doctors = await self.client.fetch_all_doctors()
        self.logger.log_source_event(logging.INFO, 'api', f"Archimed API returned doctors: {len(doctors)}")
        return doctors

    async def _doctors_from_primary_snapshot(self) -> List[Record]:
        return self.snapshots.load_primary()

    async def _doctors_from_mock(self) -> List[Record]:
        return self.snapshots.load_mock_doctors()

    def _enrich_with_secondary(self, doctors: List[Record]) -> List[Record]:
        extra = self.snapshots.load_secondary()
        if not extra:
            return doctors
        self.logger.log_source_event(logging.INFO, 'secondary', f"Enriching doctors with ProDoctorov snapshot: {len(extra)}")
        return merge_doctors(doctors, extra)

    async def get_doctor(self, doctor_id: int) -> Record:
        return await self.client.get_doctor(doctor_id)

    async def get_doctors_by_branch(self, branch_id: int) -> List[Record]:
        return await self.client.get_doctors_by_branch(branch_id)

    async def get_doctors_by_type(self, type_id: int) -> List[Record]:
        return await self.client.get_doctors_by_type(type_id)

    # Services

    async def get_services(self) -> List[Record]:
        if self.services_cache:
            self._schedule_refresh('services', self._refresh_services)
            self.monitor.record_source_used('services', 'memory')
            return self.services_cache

        cached = await self.cache.read(self.config.cache.services_key, self.config.cache.services_ttl)
        if isinstance(cached, list) and cached:
            self.services_cache = cached
            self._schedule_refresh('services', self._refresh_services)
            self.monitor.record_source_used('services', 'cache')
            return self.services_cache

        try:
            self.services_cache = await self.client.get_services()
            self.monitor.record_source_used('services', 'api')
        except ArchimedError as e:
            self.logger.log_source_event(logging.WARNING, 'mock', f"API unavailable, using mock services: {e}")
            self.services_cache = self.snapshots.load_mock_services()
            self.monitor.record_source_used('services', 'mock')

        await self.cache.write(self.config.cache.services_key, self.services_cache)
        return self.services_cache

    async def get_service(self, service_id: int) -> Record:
        return await self.client.get_service(service_id)

    async def get_services_by_group(self, group_id: int) -> List[Record]:
        try:
            return await self.client.get_services_by_group(group_id)
        except ArchimedError as e:
            self.logger.warning(f"API unavailable for services of group {group_id}: {e}")
            return []

    async def _services_or_empty(self) -> List[Record]:
        try:
            return await self.get_services()
        except ArchimedError:
            return []

    async def get_doctors_with_services(self) -> List[Record]:
        doctors, services = await asyncio.gather(self.get_doctors(), self._services_or_empty())
        return link_services_to_doctors(doctors, services)

    async def get_services_with_doctors(self) -> List[Record]:
        doctors, services = await asyncio.gather(self.get_doctors(), self._services_or_empty())
        return link_doctors_to_services(services, doctors)

    # Reference data

    async def get_zones(self) -> List[Record]:
        try:
            return await self.client.get_zones()
        except ArchimedError as e:
            self.logger.warning(f"API unavailable for zones: {e}")
            return []

    async def get_branches(self) -> List[Record]:
        try:
            return await self.client.get_branches()
        except ArchimedError as e:
            self.logger.log_source_event(logging.WARNING, 'mock', f"API unavailable, using mock branches: {e}")
            return self.snapshots.load_mock_branches()

    async def get_categories(self) -> List[Record]:
        # Some deployments have no categories endpoint
        if not self.config.api.categories_enabled:
            return []
        try:
            return await self.client.get_categories()
        except ArchimedError:
            return []

    async def get_scientific_degrees(self) -> List[Record]:
        try:
            return await self.client.get_scientific_degrees()
        except ArchimedError as e:
            self.logger.warning(f"API unavailable for scientific degrees: {e}")
            return []

    # Appointments

    async def create_appointment(self, data: AppointmentData) -> Record:
        if not self.config.api.token:
            self.logger.warning("API token not configured, returning a simulated appointment")
            await asyncio.sleep(self.config.api.mock_appointment_delay)
            now = datetime.now(timezone.utc).isoformat()
            return {
                'id': random.randrange(1000),
                **data.to_payload(),
                'status_id': 1,
                'created_at': now,
                'updated_at': now,
            }

        return await self.client.create_appointment(data.to_payload())

    async def get_appointments(self, filters: Optional[AppointmentFilters] = None) -> Page:
        params = filters.to_params() if filters else {}
        try:
            return await self.client.get_appointments(params)
        except ArchimedError as e:
            self.logger.warning(f"API unavailable for appointments: {e}")
            return Page(data=[], total=0, page=1, limit=100)

    async def get_appointment(self, appointment_id: int) -> Record:
        return await self.client.get_appointment(appointment_id)

    async def update_appointment(self, appointment_id: int, data: AppointmentData) -> Record:
        return await self.client.update_appointment(appointment_id, data.to_payload(drop_unset=True))

    async def delete_appointment(self, appointment_id: int):
        await self.client.delete_appointment(appointment_id)

    async def get_appointment_statuses(self) -> List[Record]:
        try:
            return await self.client.get_appointment_statuses()
        except ArchimedError as e:
            self.logger.warning(f"API unavailable for appointment statuses: {e}")
            return []

    async def get_appointment_status(self, status_id: int) -> Record:
        try:
            return await self.client.get_appointment_status(status_id)
        except ArchimedError as e:
            self.logger.warning(f"API unavailable for appointment status {status_id}: {e}")
            raise

    async def prefetch_all(self):
        """Warm services and doctors concurrently; failures are logged, never raised."""
        results = await asyncio.gather(self.get_services(), self.get_doctors(), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self.logger.warning(f"Prefetch failed: {result}")

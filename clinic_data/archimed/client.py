"""
Archimed API client with request timeouts, pagination and error classification.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from .models import Page, Record
from ..utils.monitoring import get_monitor


class ArchimedError(Exception):
    """Base exception for Archimed API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class ArchimedNotConfiguredError(ArchimedError):
    """No API base URL is configured."""
    pass


class ArchimedTimeoutError(ArchimedError):
    """The request did not complete within its timeout."""
    pass


class ArchimedHTTPError(ArchimedError):
    """The API answered with a non-2xx status."""
    pass


class ArchimedClient:
    """
    Talks to the Archimed REST API and the public doctors gateway.
    """

    def __init__(self, base_url: str, token: str = "", public_doctors_url: str = "",
                 request_timeout: float = 20.0, page_limit: int = 200, max_pages: int = 50):
        self.base_url = (base_url or "").rstrip('/')
        self.token = token or ""
        self.public_doctors_url = public_doctors_url
        self.request_timeout = request_timeout
        self.page_limit = page_limit
        self.max_pages = max_pages

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        self.logger.info(f"ArchimedClient created, API URL: {self.base_url or 'not configured'}")
        self.logger.info(f"API token configured: {bool(self.token)}")

    @classmethod
    def from_config(cls, api_config) -> 'ArchimedClient':
        return cls(
            base_url=api_config.base_url,
            token=api_config.token,
            public_doctors_url=api_config.public_doctors_url,
            request_timeout=api_config.request_timeout,
            page_limit=api_config.page_limit,
            max_pages=api_config.max_pages
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open the HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self.logger.debug("ArchimedClient session started")

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("ArchimedClient session closed")

    @property
    def headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    async def request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                      json_body: Optional[Any] = None, timeout: Optional[float] = None,
                      suppress_error_log: bool = False) -> Any:
        """
        Send one request to the API and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: Path relative to the base URL, e.g. "/doctors"
            params: Query parameters
            json_body: Request body, sent as JSON
            timeout: Timeout in seconds (defaults to request_timeout)
            suppress_error_log: Do not log the body of error responses

        Returns:
            Parsed JSON, or None for an empty body

        Raises:
            ArchimedNotConfiguredError, ArchimedTimeoutError, ArchimedHTTPError, ArchimedError
        """
        if not self.base_url:
            raise ArchimedNotConfiguredError("ARCHIMED_API_URL not configured")

        await self.start()
        url = f"{self.base_url}{endpoint}"
        request_timeout = ClientTimeout(total=timeout or self.request_timeout)
        monitor = get_monitor()
        start_time = time.time()

        try:
            async with self.session.request(method, url, params=params, json=json_body,
                                            headers=self.headers, timeout=request_timeout) as response:
                body = await response.text()
                monitor.record_api_request(method, time.time() - start_time)

                if not 200 <= response.status < 300:
                    if not suppress_error_log:
                        self.logger.error(f"API error response: {body[:500]}")
                    monitor.record_api_error(f"http_{response.status}")
                    raise ArchimedHTTPError(f"Archimed API error: {response.status} - {body}",
                                            status_code=response.status, url=url)

        except asyncio.TimeoutError:
            monitor.record_api_error('timeout')
            raise ArchimedTimeoutError("Request timeout", url=url)
        except ClientError as e:
            monitor.record_api_error('client_error')
            raise ArchimedError(f"Request to {url} failed: {e}", url=url) from e

        return self._decode(body, url)

    def _decode(self, body: str, url: str) -> Any:
        if not body or not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise ArchimedError(f"Invalid JSON from {url}: {e}", url=url) from e

    async def get(self, endpoint: str, **kwargs) -> Any:
        return await self.request('GET', endpoint, **kwargs)

    async def get_page(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                       **kwargs) -> Page:
        """GET a list endpoint and normalize it into a Page."""
        payload = await self.get(endpoint, params=params, **kwargs)
        return Page.from_response(payload, default_limit=self.page_limit)

    async def get_list(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                       **kwargs) -> List[Record]:
        return (await self.get_page(endpoint, params, **kwargs)).data

    async def fetch_all_doctors(self) -> List[Record]:
        """
        Fetch every doctor page by page.

        The first page is requested with a large limit; remaining pages are
        fetched up to max_pages, stopping at an empty or short page. On error
        the doctors collected so far are returned.
        """
        doctors: List[Record] = []

        if not self.base_url:
            return doctors

        try:
            first = await self.get_page('/doctors', {'page': 1, 'limit': self.page_limit})
            doctors.extend(first.data)

            limit = first.limit
            total_pages = first.total_pages if limit > 0 else 1

            for page in range(2, min(total_pages, self.max_pages) + 1):
                next_page = await self.get_page('/doctors', {'page': page, 'limit': limit})
                if not next_page.data:
                    break
                doctors.extend(next_page.data)
                if len(next_page.data) < limit:
                    break

        except ArchimedError as e:
            self.logger.warning(f"Error fetching all doctors from API: {e}")

        self.logger.debug(f"Fetched {len(doctors)} doctors from API")
        return doctors

    async def fetch_public_doctors(self) -> List[Record]:
        """Fetch the doctors list from the public site gateway (no auth headers)."""
        if not self.public_doctors_url:
            return []

        await self.start()
        url = self.public_doctors_url
        request_timeout = ClientTimeout(total=self.request_timeout)

        try:
            async with self.session.get(url, params={'limit': self.page_limit},
                                        timeout=request_timeout) as response:
                body = await response.text()
                if not 200 <= response.status < 300:
                    raise ArchimedHTTPError(f"Public gateway error: {response.status}",
                                            status_code=response.status, url=url)
        except asyncio.TimeoutError:
            raise ArchimedTimeoutError("Request timeout", url=url)
        except ClientError as e:
            raise ArchimedError(f"Request to {url} failed: {e}", url=url) from e

        return Page.from_response(self._decode(body, url)).data

    # Doctors

    async def get_doctor(self, doctor_id: int) -> Record:
        return await self.get(f'/doctors/{doctor_id}')

    async def get_doctors_by_branch(self, branch_id: int) -> List[Record]:
        return await self.get_list('/doctors', {'branch_id': branch_id})

    async def get_doctors_by_type(self, type_id: int) -> List[Record]:
        return await self.get_list('/doctors', {'type_id': type_id})

    # Services

    async def get_services(self) -> List[Record]:
        return await self.get_list('/services')

    async def get_service(self, service_id: int) -> Record:
        return await self.get(f'/services/{service_id}')

    async def get_services_by_group(self, group_id: int) -> List[Record]:
        return await self.get_list('/services', {'group_id': group_id})

    # Reference data

    async def get_zones(self) -> List[Record]:
        return await self.get_list('/zones')

    async def get_branches(self) -> List[Record]:
        return await self.get_list('/branchs')

    async def get_categories(self) -> List[Record]:
        return await self.get_list('/categories', suppress_error_log=True)

    async def get_scientific_degrees(self) -> List[Record]:
        return await self.get_list('/scientific_degrees')

    # Appointments

    async def create_appointment(self, payload: Dict[str, Any]) -> Record:
        return await self.request('POST', '/talons', json_body=payload)

    async def get_appointments(self, params: Optional[Dict[str, str]] = None) -> Page:
        return await self.get_page('/talons', params or None)

    async def get_appointment(self, appointment_id: int) -> Record:
        return await self.get(f'/talons/{appointment_id}')

    async def update_appointment(self, appointment_id: int, payload: Dict[str, Any]) -> Record:
        return await self.request('PUT', f'/talons/{appointment_id}', json_body=payload)

    async def delete_appointment(self, appointment_id: int):
        await self.request('DELETE', f'/talons/{appointment_id}')

    async def get_appointment_statuses(self) -> List[Record]:
        return await self.get_list('/talonstatuses')

    async def get_appointment_status(self, status_id: int) -> Record:
        return await self.get(f'/talonstatuses/{status_id}')

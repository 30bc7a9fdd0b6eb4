"""
Archimed API access.
"""

from .client import (
    ArchimedClient, ArchimedError, ArchimedNotConfiguredError,
    ArchimedTimeoutError, ArchimedHTTPError
)
from .models import Page, AppointmentData, AppointmentFilters, make_doctor

__all__ = [
    'ArchimedClient', 'ArchimedError', 'ArchimedNotConfiguredError',
    'ArchimedTimeoutError', 'ArchimedHTTPError',
    'Page', 'AppointmentData', 'AppointmentFilters', 'make_doctor'
]

"""Shared API dependencies."""

import secrets
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from cloak_courier.core.errors import ServiceKeyError
from cloak_courier.core.settings import settings
from cloak_courier.services.coordinator import DisclosureCoordinator

# Service API callers (the chat bot) authenticate with a shared key
service_key_scheme = APIKeyHeader(name="X-Courier-Key", auto_error=False)


def get_coordinator(request: Request) -> DisclosureCoordinator:
    """Return the coordinator built at startup."""
    return request.app.state.coordinator


def require_service_key(
    api_key: Annotated[str | None, Depends(service_key_scheme)],
) -> None:
    """Reject service API calls without the configured key.

    Raises:
        ServiceKeyError: If no key is configured or the header does not match.
    """
    expected = settings.service_api_key
    if not expected or not api_key or not secrets.compare_digest(api_key, expected):
        raise ServiceKeyError("Invalid service key")


CoordinatorDep = Annotated[DisclosureCoordinator, Depends(get_coordinator)]

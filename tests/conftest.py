# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- In-memory backend with a signed-in admin
- Session holder and data-access API wired to that backend
- Lifecycle manager reset
"""

from collections.abc import Generator

import pytest

from mindbreakers.core.backend import AuthUser, InMemoryBackend, NullBackend, Session
from mindbreakers.core.commands import ServerCommandsAPI
from mindbreakers.core.lifecycle import reset_lifecycle_manager
from mindbreakers.core.session import SessionHolder

ADMIN_EMAIL = "admin@mindbreakers.gg"
ADMIN_PASSWORD = "hunter22"


@pytest.fixture
def backend() -> InMemoryBackend:
    """Configured, empty in-memory backend."""
    return InMemoryBackend()


@pytest.fixture
def admin(backend: InMemoryBackend) -> AuthUser:
    """An admin user registered with the auth service."""
    return backend.auth.add_user(ADMIN_EMAIL, ADMIN_PASSWORD, app_metadata={"role": "admin"})


@pytest.fixture
def admin_session(backend: InMemoryBackend, admin: AuthUser) -> Session:
    """A valid session for the admin, current in the auth service."""
    return backend.auth.issue_session(admin)


@pytest.fixture
def holder() -> SessionHolder:
    """Empty session holder."""
    return SessionHolder()


@pytest.fixture
def signed_in_holder(holder: SessionHolder, admin_session: Session) -> SessionHolder:
    """Session holder carrying the admin session."""
    holder.set(admin_session)
    return holder


@pytest.fixture
def api(backend: InMemoryBackend, signed_in_holder: SessionHolder) -> ServerCommandsAPI:
    """Data-access API acting as the signed-in admin."""
    return ServerCommandsAPI(backend, signed_in_holder)


@pytest.fixture
def unconfigured_api(holder: SessionHolder) -> ServerCommandsAPI:
    """Data-access API over the null backend."""
    return ServerCommandsAPI(NullBackend(), holder)


@pytest.fixture
def reset_lifecycle() -> Generator[None, None, None]:
    """Give each test a fresh global lifecycle manager."""
    reset_lifecycle_manager()
    yield
    reset_lifecycle_manager()

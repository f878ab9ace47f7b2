import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tests.fakes import (
    InMemoryTokenStore,
    InMemoryUserStore,
    MutableClock,
    RecordingMailer,
)
from tokengate.core import auth as core_auth
from tokengate.core.config import settings
from tokengate.core.credentials import CredentialIssuer
from tokengate.models.base import Base
from tokengate.repositories.user_store import UserAccount
from tokengate.services import token_policy
from tokengate.services.auth_orchestrator import AuthOrchestrator

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Security: test-only signing secrets. Production reads real secrets from env.
TEST_ACCESS_SECRET = "test-access-secret-that-is-at-least-32-chars"  # nosec B105
TEST_REFRESH_SECRET = "test-refresh-secret-that-is-at-least-32-chars"  # nosec B105
TEST_ISSUER = "tokengate-test"
TEST_AUDIENCE = "tokengate-test-users"

TEST_PASSWORD = "Correct-horse-42"  # nosec B105
TEST_EMAIL = "ada@example.com"
TEST_FRONTEND_URL = "https://app.example.com"

# Fixed starting point for every clock-driven test
BASE_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex((settings.database_host, settings.database_port))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            f"PostgreSQL not available on port {settings.database_port}. "
            "Start a database to run repository tests."
        )


# =============================================================================
# Global test settings
# =============================================================================


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch: pytest.MonkeyPatch) -> None:
    """Lower the bcrypt cost factor so hashing does not dominate test time."""
    monkeypatch.setattr(core_auth, "_BCRYPT_ROUNDS", 4)


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests off the network (HIBP, ip-api) and pin email link settings."""
    monkeypatch.setattr(settings, "password_breach_check_enabled", False)
    monkeypatch.setattr(settings, "geo_lookup_enabled", False)
    monkeypatch.setattr(settings, "frontend_url", TEST_FRONTEND_URL)
    monkeypatch.setattr(settings, "require_verified_email", True)


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Rate limiting is tested separately; disable for other tests to avoid
    failures from rate limit triggers.
    """
    from tokengate.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original_enabled


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(BASE_TIME)


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def issuer(clock: MutableClock) -> CredentialIssuer:
    return CredentialIssuer(
        access_secret=TEST_ACCESS_SECRET,
        refresh_secret=TEST_REFRESH_SECRET,
        issuer=TEST_ISSUER,
        audience=TEST_AUDIENCE,
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        clock=clock,
    )


@pytest.fixture
def orchestrator(
    token_store: InMemoryTokenStore,
    user_store: InMemoryUserStore,
    issuer: CredentialIssuer,
    mailer: RecordingMailer,
    clock: MutableClock,
) -> AuthOrchestrator:
    return AuthOrchestrator(
        tokens=token_store,
        users=user_store,
        issuer=issuer,
        mailer=mailer,
        frontend_url=TEST_FRONTEND_URL,
        site_name="Tokengate",
        mail_timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def minted_secrets(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Record every plaintext secret minted during the test, in order.

    Secrets are still generated by the real generator; tests read them
    here instead of parsing email bodies.
    """
    minted: list[str] = []
    real_generate = token_policy.generate_secret

    def recording_generate(secret_format: token_policy.SecretFormat) -> str:
        secret = real_generate(secret_format)
        minted.append(secret)
        return secret

    monkeypatch.setattr(token_policy, "generate_secret", recording_generate)
    return minted


@pytest.fixture
def verified_user(user_store: InMemoryUserStore) -> UserAccount:
    """An account with a verified email and TEST_PASSWORD."""
    return user_store.add(
        UserAccount(
            id=uuid.uuid4(),
            email=TEST_EMAIL,
            name="Ada",
            password_hash=core_auth.hash_password(TEST_PASSWORD),
            email_verified=BASE_TIME - timedelta(days=30),
        )
    )


@pytest.fixture
def unverified_user(user_store: InMemoryUserStore) -> UserAccount:
    """An account that has not confirmed its email yet."""
    return user_store.add(
        UserAccount(
            id=uuid.uuid4(),
            email="grace@example.com",
            name="Grace",
            password_hash=core_auth.hash_password(TEST_PASSWORD),
        )
    )


# =============================================================================
# API client
# =============================================================================


@pytest_asyncio.fixture
async def api_client(
    token_store: InMemoryTokenStore,
    user_store: InMemoryUserStore,
    mailer: RecordingMailer,
    issuer: CredentialIssuer,
    clock: MutableClock,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the real app with every storage collaborator faked.

    Stores, mailer, clock, issuer and client context are swapped through
    dependency overrides, so no database or network is needed.
    """
    from tokengate.api import deps
    from tokengate.main import app

    app.dependency_overrides[deps.get_token_store] = lambda: token_store
    app.dependency_overrides[deps.get_user_store] = lambda: user_store
    app.dependency_overrides[deps.get_mailer] = lambda: mailer
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_credential_issuer] = lambda: issuer
    app.dependency_overrides[deps.get_client_context] = lambda: {
        "ip": "203.0.113.7",
        "country": "Iceland",
        "browser": "Firefox",
        "os": "Linux",
        "device": "Desktop",
        "user_agent": "pytest",
    }

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Database (integration tests)
# =============================================================================


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available.
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

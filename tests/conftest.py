import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.domain.actor import Actor
from marketplace.domain.models import (
    Base, CatalogService, Provider, ProviderService, ServiceCategory, ServiceRequest,
    SystemSetting, User,
)
from marketplace.domain.status import BookingStatus, ProviderStatus, UserRole
from marketplace.infrastructure.notifications import NotificationDispatcher


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs to be told to leave transactions to SQLAlchemy for SAVEPOINT to work
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        super().__init__(url="")
        self.sent = []

    def notify(self, user_id, title, message, kind="info"):
        if user_id is not None:
            self.sent.append({"user_id": user_id, "title": title, "message": message, "type": kind})


@pytest.fixture
def notifier():
    return RecordingNotifier()


class Seed:
    """Inserts reference rows the booking core only reads."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def user(self, role=UserRole.CLIENT, name=None):
        self._counter += 1
        name = name or f"{UserRole(role).value}-{self._counter}"
        return self._save(User(email=f"{name}@example.com", name=name, user_type=UserRole(role).value))

    def provider(self, status=ProviderStatus.APPROVED, user=None):
        user = user or self.user(UserRole.PROVIDER)
        return self._save(Provider(user=user, status=ProviderStatus(status).value))

    def category(self, name="Cleaning"):
        return self._save(ServiceCategory(name=name))

    def catalog_service(self, price="50.00", category=None, is_active=True):
        category = category or self.category()
        return self._save(CatalogService(
            category_id=category.id,
            name="Catalog cleaning",
            price=Decimal(price) if price is not None else None,
            is_active=is_active,
        ))

    def provider_service(self, provider=None, price="100.00", category=None, is_active=True):
        provider = provider or self.provider()
        category = category or self.category()
        return self._save(ProviderService(
            provider_id=provider.id,
            category_id=category.id,
            name="Deep cleaning",
            price=Decimal(price) if price is not None else None,
            is_active=is_active,
        ))

    def setting(self, key, value):
        return self._save(SystemSetting(key=key, value=value))

    def service_request(self, client, total="100.00", status=BookingStatus.PENDING, provider=None, category=None):
        category = category or self.category()
        return self._save(ServiceRequest(
            client_id=client.id,
            category_id=category.id,
            provider_id=provider.id if provider else None,
            title="Fix the sink",
            total_amount=Decimal(total) if total is not None else None,
            status=BookingStatus(status).value,
        ))


@pytest.fixture
def seed(db):
    return Seed(db)


def as_actor(user) -> Actor:
    return Actor(user_id=user.id, role=UserRole(user.user_type))


@pytest.fixture
def actor_for():
    return as_actor

"""Pytest fixtures for service and API tests."""

import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Callable

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pushsaas.api.deps import get_db
from pushsaas.core.security import create_access_token
from pushsaas.db import models  # noqa: F401  # Imported for side effects
from pushsaas.db.base import Base
from pushsaas.db.models import (
    Campaign,
    CampaignAction,
    CampaignStatus,
    Segment,
    SendType,
    Subscription,
    User,
)
from pushsaas.main import create_app
from pushsaas.services.dispatcher import CampaignDispatcher
from pushsaas.services.push_provider import DeliveryGone, DeliveryTarget, DeliveryTransient


class StubPushProvider:
    """Push provider double that fails chosen endpoints on purpose."""

    def __init__(self) -> None:
        self.gone: set[str] = set()
        self.transient: set[str] = set()
        self.hang: set[str] = set()
        self.slow: dict[str, float] = {}
        self.delay: float = 0.0
        self.sent: list[tuple[DeliveryTarget, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, target: DeliveryTarget, payload: str) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if target.endpoint in self.slow:
                await asyncio.sleep(self.slow[target.endpoint])
            if target.endpoint in self.hang:
                await asyncio.sleep(3600)
            if target.endpoint in self.gone:
                raise DeliveryGone("push subscription has unsubscribed or expired", status_code=410)
            if target.endpoint in self.transient:
                raise DeliveryTransient("push service unavailable", status_code=503)
            self.sent.append((target, payload))
        finally:
            self.in_flight -= 1


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def push_provider() -> StubPushProvider:
    return StubPushProvider()


@pytest.fixture()
def dispatcher(session_factory, push_provider) -> CampaignDispatcher:
    return CampaignDispatcher(
        session_factory,
        push_provider,
        batch_size=100,
        batch_pause_seconds=0,
        delivery_timeout=1.0,
        max_attempts=3,
    )


@pytest.fixture()
def user(db_session) -> User:
    account = User(email="owner@example.com", full_name="Site Owner", role="user", is_active=True)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture()
def other_user(db_session) -> User:
    account = User(email="other@example.com", role="user", is_active=True)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture()
def admin_user(db_session) -> User:
    account = User(email="admin@example.com", role="admin", is_active=True)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture()
def make_subscription(db_session) -> Callable[..., Subscription]:
    counter = {"value": 0}

    def factory(
        *,
        site_id: int | None = None,
        user_agent: str | None = "Mozilla/5.0 (X11; Linux x86_64) Chrome/120.0",
        created_at: datetime | None = None,
        endpoint: str | None = None,
    ) -> Subscription:
        counter["value"] += 1
        subscription = Subscription(
            endpoint=endpoint or f"https://push.example.com/send/{counter['value']}",
            p256dh=f"p256dh-{counter['value']}",
            auth=f"auth-{counter['value']}",
            user_agent=user_agent,
            site_id=site_id,
            created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        db_session.add(subscription)
        db_session.commit()
        return subscription

    return factory


@pytest.fixture()
def make_campaign(db_session, user) -> Callable[..., Campaign]:
    def factory(
        *,
        status: CampaignStatus = CampaignStatus.DRAFT,
        send_type: SendType = SendType.DRAFT,
        site_id: int | None = None,
        segment: Segment | None = None,
        scheduled_at: datetime | None = None,
        owner: User | None = None,
        actions: list[tuple[str, str]] | None = None,
        **content,
    ) -> Campaign:
        campaign = Campaign(
            user_id=(owner or user).id,
            name=content.pop("name", "Launch"),
            title=content.pop("title", "Hi"),
            body=content.pop("body", "Test"),
            site_id=site_id,
            segment_id=segment.id if segment is not None else None,
            send_type=send_type.value,
            status=status.value,
            scheduled_at=scheduled_at,
            dispatch_attempts=0,
            total_sent=0,
            total_delivered=0,
            total_failed=0,
            total_clicked=0,
            **content,
        )
        for order, (text, url) in enumerate(actions or [], start=1):
            campaign.actions.append(CampaignAction(action_text=text, action_url=url, action_order=order))
        db_session.add(campaign)
        db_session.commit()
        return campaign

    return factory


@pytest.fixture()
def make_segment(db_session, user) -> Callable[..., Segment]:
    def factory(conditions: dict | None = None, *, site_id: int | None = None, name: str = "Segment") -> Segment:
        segment = Segment(user_id=user.id, site_id=site_id, name=name, conditions=conditions or {})
        db_session.add(segment)
        db_session.commit()
        return segment

    return factory


@pytest.fixture()
def app(session_factory, push_provider):
    application = create_app(session_factory=session_factory, push_provider=push_provider)

    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def auth_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture()
def admin_headers(admin_user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(admin_user.id))}"}

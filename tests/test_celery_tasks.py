"""Tests for Celery background tasks."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from pushsaas.db.models import Campaign, CampaignStatus, SendType
from pushsaas.tasks.campaigns import execute_campaign, sweep_overdue_campaigns


@pytest.fixture()
def task_environment(session_factory, push_provider):
    with patch("pushsaas.tasks.campaigns.SessionLocal", side_effect=session_factory), patch(
        "pushsaas.tasks.campaigns.build_push_provider", return_value=push_provider
    ):
        yield


def test_execute_campaign_sends_draft(db_session, task_environment, make_campaign, make_subscription):
    make_subscription()
    campaign = make_campaign()

    result = execute_campaign.run(campaign.id)

    assert result["status"] == "sent"
    assert result["campaign_id"] == campaign.id
    assert result["sent"] == 1
    stored = db_session.get(Campaign, campaign.id, populate_existing=True)
    assert stored.status == CampaignStatus.SENT.value


def test_execute_campaign_twice_is_skipped(task_environment, make_campaign, make_subscription, push_provider):
    make_subscription()
    campaign = make_campaign()

    execute_campaign.run(campaign.id)
    second = execute_campaign.run(campaign.id)

    assert second == {"campaign_id": campaign.id, "status": "skipped"}
    assert len(push_provider.sent) == 1


def test_execute_missing_campaign_is_skipped(task_environment):
    assert execute_campaign.run(999) == {"campaign_id": 999, "status": "skipped"}


def test_sweep_dispatches_overdue_and_recovers_stalled(
    db_session, task_environment, make_campaign, make_subscription
):
    make_subscription()
    overdue = make_campaign(
        status=CampaignStatus.SCHEDULED,
        send_type=SendType.SCHEDULED,
        scheduled_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    upcoming = make_campaign(
        status=CampaignStatus.SCHEDULED,
        send_type=SendType.SCHEDULED,
        scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    stalled = make_campaign(status=CampaignStatus.PROCESSING, send_type=SendType.IMMEDIATE)
    stalled.updated_at = datetime.now(timezone.utc) - timedelta(hours=2)
    db_session.commit()

    result = sweep_overdue_campaigns.run()

    assert result == {"recovered": [stalled.id], "dispatched": 1}
    assert db_session.get(Campaign, overdue.id, populate_existing=True).status == CampaignStatus.SENT.value
    assert db_session.get(Campaign, upcoming.id, populate_existing=True).status == CampaignStatus.SCHEDULED.value
    released = db_session.get(Campaign, stalled.id, populate_existing=True)
    assert released.status == CampaignStatus.DRAFT.value
    assert released.dispatch_attempts == 1
    assert released.last_error == "Dispatch interrupted before completion"


def test_beat_schedule_runs_the_sweep():
    from pushsaas.celery_app import celery_app

    entry = celery_app.conf.beat_schedule["sweep-overdue-campaigns"]

    assert entry["task"] == sweep_overdue_campaigns.name

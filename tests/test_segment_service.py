"""Tests for segment CRUD and audience preview."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from pushsaas.db.models import CampaignStatus, Segment
from pushsaas.schemas.segment import SegmentCreate, SegmentUpdate
from pushsaas.services.segment_service import SegmentService
from pushsaas.utils.exceptions import CampaignStateError, NotFoundError, ValidationError


@pytest.fixture()
def service(db_session) -> SegmentService:
    return SegmentService(db_session)


def test_create_and_fetch_segment(service, user):
    segment = service.create_segment(
        user,
        SegmentCreate(name=" Chrome users ", site_id=7, conditions={"userAgent": {"contains": "chrome"}}),
    )

    fetched = service.get_segment(user, segment.id)

    assert fetched.name == "Chrome users"
    assert fetched.site_id == 7
    assert fetched.conditions == {"userAgent": {"contains": "chrome"}}


def test_create_rejects_unknown_condition_kind(service, user, db_session):
    with pytest.raises(ValidationError) as excinfo:
        service.create_segment(user, SegmentCreate(name="Bad", conditions={"country": {"equals": "DE"}}))

    assert excinfo.value.details == {"errors": ["Unknown condition kind: country"]}
    assert db_session.query(Segment).count() == 0


def test_segments_are_owner_scoped(service, other_user, make_segment):
    segment = make_segment()

    with pytest.raises(NotFoundError):
        service.get_segment(other_user, segment.id)
    items, pagination = service.list_segments(other_user)
    assert items == []
    assert pagination["total"] == 0


def test_update_only_touches_provided_fields(service, user, make_segment):
    segment = make_segment({"siteId": {"equals": 7}}, site_id=7, name="Site 7")

    updated = service.update_segment(user, segment.id, SegmentUpdate(description="Everyone on site 7"))

    assert updated.name == "Site 7"
    assert updated.site_id == 7
    assert updated.conditions == {"siteId": {"equals": 7}}
    assert updated.description == "Everyone on site 7"


def test_update_validates_new_conditions(service, user, make_segment):
    segment = make_segment()

    with pytest.raises(ValidationError):
        service.update_segment(user, segment.id, SegmentUpdate(conditions={"createdAt": {"after": "soon"}}))


def test_list_segments_filters_by_site_and_name(service, user, make_segment):
    make_segment(name="Chrome on 7", site_id=7)
    make_segment(name="Firefox on 7", site_id=7)
    make_segment(name="Chrome on 8", site_id=8)

    items, pagination = service.list_segments(user, site_id=7)
    assert [item.name for item in items] == ["Firefox on 7", "Chrome on 7"]
    assert pagination == {"page": 1, "limit": 20, "total": 2, "pages": 1}

    items, _ = service.list_segments(user, search="chrome")
    assert {item.name for item in items} == {"Chrome on 7", "Chrome on 8"}


def test_delete_refused_while_pending_campaign_targets_segment(service, user, make_segment, make_campaign, db_session):
    segment = make_segment()
    pending = make_campaign(segment=segment)

    with pytest.raises(CampaignStateError) as excinfo:
        service.delete_segment(user, segment.id)
    assert excinfo.value.details == {"campaign_ids": [pending.id]}

    pending.status = CampaignStatus.SENT.value
    db_session.commit()

    service.delete_segment(user, segment.id)
    assert db_session.get(Segment, segment.id) is None


def test_preview_counts_matches_and_truncates_endpoints(service, make_subscription):
    long_endpoint = "https://fcm.googleapis.com/fcm/send/" + "x" * 80
    make_subscription(site_id=7, endpoint=long_endpoint)
    make_subscription(site_id=7, user_agent="Mozilla/5.0 Firefox/121.0")
    make_subscription(site_id=8)

    preview = service.preview_conditions({"userAgent": {"contains": "chrome"}}, site_id=7, limit=10)

    assert preview["total_matching"] == 1
    assert preview["total_available"] == 2
    [row] = preview["subscriptions"]
    assert row["endpoint"] == long_endpoint[:50] + "..."
    assert row["site_id"] == 7


def test_preview_respects_limit(service, make_subscription):
    for _ in range(5):
        make_subscription()

    preview = service.preview_conditions({}, limit=2)

    assert preview["total_matching"] == 5
    assert len(preview["subscriptions"]) == 2
    assert preview["subscriptions"][0]["endpoint"] == "https://push.example.com/send/1"


def test_preview_saved_segment_uses_its_site(service, user, make_segment, make_subscription):
    make_subscription(site_id=7, created_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
    make_subscription(site_id=7, created_at=datetime(2023, 5, 1, tzinfo=timezone.utc))
    make_subscription(site_id=8, created_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
    segment = make_segment({"createdAt": {"after": "2024-01-01T00:00:00Z"}}, site_id=7)

    preview = service.preview_segment(user, segment.id)

    assert preview["total_matching"] == 1
    assert preview["total_available"] == 2


def test_preview_rejects_invalid_conditions(service):
    with pytest.raises(ValidationError):
        service.preview_conditions({"siteId": "7"})

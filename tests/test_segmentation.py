"""Tests for the declarative segment matcher."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from pushsaas.core.segmentation import (
    ConditionKind,
    CreatedAtCondition,
    RejectAll,
    compile_conditions,
    matches,
    validate_conditions,
)


@dataclass
class FakeSubscription:
    user_agent: str | None = "Mozilla/5.0 Chrome/120.0"
    created_at: datetime | None = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    site_id: int | None = 7


@pytest.mark.parametrize("conditions", [None, {}])
def test_empty_conditions_match_everything(conditions):
    assert matches(FakeSubscription(), conditions) is True
    assert matches(FakeSubscription(user_agent=None, created_at=None, site_id=None), conditions) is True


def test_user_agent_contains_is_case_insensitive():
    subscription = FakeSubscription(user_agent="Mozilla/5.0 (Windows NT 10.0) CHROME/120")

    assert matches(subscription, {"userAgent": {"contains": "chrome"}})
    assert not matches(subscription, {"userAgent": {"contains": "firefox"}})
    assert not matches(subscription, {"userAgent": {"notContains": "Chrome"}})


def test_missing_user_agent_is_treated_as_empty():
    subscription = FakeSubscription(user_agent=None)

    assert matches(subscription, {"userAgent": {"contains": "chrome"}}) is False
    assert matches(subscription, {"userAgent": {"notContains": "chrome"}}) is True


def test_created_at_bounds_are_exclusive():
    boundary = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    subscription = FakeSubscription(created_at=boundary)

    assert not matches(subscription, {"createdAt": {"after": boundary.isoformat()}})
    assert not matches(subscription, {"createdAt": {"before": boundary.isoformat()}})
    assert matches(
        subscription,
        {
            "createdAt": {
                "after": (boundary - timedelta(seconds=1)).isoformat(),
                "before": (boundary + timedelta(seconds=1)).isoformat(),
            }
        },
    )


def test_created_at_accepts_zulu_suffix_and_naive_rows():
    subscription = FakeSubscription(created_at=datetime(2024, 6, 1, 12, 0))

    assert matches(subscription, {"createdAt": {"after": "2024-06-01T11:59:59Z"}})
    assert not matches(subscription, {"createdAt": {"after": "2024-06-01T12:00:00Z"}})


def test_site_id_equals_and_membership():
    subscription = FakeSubscription(site_id=7)

    assert matches(subscription, {"siteId": {"equals": 7}})
    assert not matches(subscription, {"siteId": {"equals": 8}})
    assert matches(subscription, {"siteId": {"in": [1, 7]}})
    assert not matches(subscription, {"siteId": {"in": [1, 2]}})
    assert not matches(FakeSubscription(site_id=None), {"siteId": {"equals": 7}})


def test_condition_kinds_are_combined_with_and():
    conditions = {
        "userAgent": {"contains": "chrome"},
        "siteId": {"equals": 7},
    }

    assert matches(FakeSubscription(), conditions)
    assert not matches(FakeSubscription(site_id=8), conditions)
    assert not matches(FakeSubscription(user_agent="Firefox"), conditions)


def test_malformed_predicate_fails_closed_instead_of_raising():
    conditions = {"createdAt": {"after": "not-a-date"}}

    rule = compile_conditions(conditions)

    assert isinstance(rule.conditions[0], RejectAll)
    assert matches(FakeSubscription(), conditions) is False


def test_non_object_predicate_fails_closed():
    assert matches(FakeSubscription(), {"userAgent": "chrome"}) is False


def test_unknown_kind_is_ignored_when_matching():
    assert matches(FakeSubscription(), {"country": {"equals": "DE"}}) is True


def test_compiled_rule_filters_a_collection():
    rule = compile_conditions({"siteId": {"in": [1, 2]}})
    rows = [FakeSubscription(site_id=1), FakeSubscription(site_id=3), FakeSubscription(site_id=2)]

    assert [row.site_id for row in rule.filter(rows)] == [1, 2]


def test_created_at_parser_returns_utc_bounds():
    condition = CreatedAtCondition.parse({"after": "2024-01-01T02:00:00+02:00"})

    assert condition.after == datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
    assert condition.before is None


def test_every_kind_has_a_parser():
    for kind in ConditionKind:
        assert compile_conditions({kind.value: {}}).matches(FakeSubscription())


def test_validate_conditions_reports_problems():
    assert validate_conditions({"userAgent": {"contains": "chrome"}}) == []
    assert validate_conditions(None) == []

    errors = validate_conditions(
        {
            "country": {"equals": "DE"},
            "userAgent": {"startsWith": "Moz"},
            "createdAt": {"after": "yesterday"},
            "siteId": 7,
        }
    )

    assert "Unknown condition kind: country" in errors
    assert "Unknown operators for 'userAgent': startsWith" in errors
    assert any(error.startswith("Condition 'createdAt'") for error in errors)
    assert "Condition 'siteId' must be an object" in errors
    assert validate_conditions(["not", "a", "mapping"]) == ["Conditions must be an object"]

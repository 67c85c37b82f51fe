"""Declarative subscriber segmentation.

Segments store their rules as a JSON object keyed by condition kind::

    {"userAgent": {"contains": "chrome"}, "createdAt": {"after": "2024-01-01"}}

Each kind maps to one condition class with its own evaluator. Every kind
present must hold for a subscription to match, and an empty rule set matches
everything. A predicate that cannot be parsed becomes a condition that
rejects every subscription, so a broken segment reaches nobody instead of
raising in the middle of a dispatch. Kinds this module does not know are
skipped when evaluating stored rows and reported by :func:`validate_conditions`.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Protocol, Tuple, TypeVar

from loguru import logger


class ConditionKind(str, Enum):
    """Condition kinds understood by the matcher."""

    USER_AGENT = "userAgent"
    CREATED_AT = "createdAt"
    SITE_ID = "siteId"


class SubscriberRecord(Protocol):
    """Subset of subscription attributes a segment can inspect."""

    user_agent: str | None
    created_at: datetime | None
    site_id: int | None


class MalformedConditionError(ValueError):
    """Raised when a predicate object cannot be interpreted."""


class Condition(Protocol):
    """A single parsed condition."""

    kind: ClassVar[ConditionKind]
    operators: ClassVar[frozenset[str]]

    def matches(self, subscription: SubscriberRecord) -> bool:  # pragma: no cover - interface definition
        """Return whether the subscription satisfies this condition."""


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedConditionError(f"Invalid date: {value!r}") from exc
    else:
        raise MalformedConditionError(f"Invalid date: {value!r}")
    return ensure_utc(parsed)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class UserAgentCondition:
    """Case-insensitive substring tests against the stored user agent."""

    contains: str | None = None
    not_contains: str | None = None

    kind: ClassVar[ConditionKind] = ConditionKind.USER_AGENT
    operators: ClassVar[frozenset[str]] = frozenset({"contains", "notContains"})

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "UserAgentCondition":
        contains = raw.get("contains")
        not_contains = raw.get("notContains")
        for value in (contains, not_contains):
            if value is not None and not isinstance(value, str):
                raise MalformedConditionError(f"userAgent operand must be a string, got {value!r}")
        return cls(contains=contains or None, not_contains=not_contains or None)

    def matches(self, subscription: SubscriberRecord) -> bool:
        agent = (subscription.user_agent or "").casefold()
        if self.contains and self.contains.casefold() not in agent:
            return False
        if self.not_contains and self.not_contains.casefold() in agent:
            return False
        return True


@dataclass(frozen=True)
class CreatedAtCondition:
    """Exclusive date bounds on the subscription creation time."""

    after: datetime | None = None
    before: datetime | None = None

    kind: ClassVar[ConditionKind] = ConditionKind.CREATED_AT
    operators: ClassVar[frozenset[str]] = frozenset({"after", "before"})

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "CreatedAtCondition":
        after = raw.get("after")
        before = raw.get("before")
        return cls(
            after=_coerce_datetime(after) if after not in (None, "") else None,
            before=_coerce_datetime(before) if before not in (None, "") else None,
        )

    def matches(self, subscription: SubscriberRecord) -> bool:
        if self.after is None and self.before is None:
            return True
        if subscription.created_at is None:
            return False
        created_at = ensure_utc(subscription.created_at)
        if self.after is not None and not created_at > self.after:
            return False
        if self.before is not None and not created_at < self.before:
            return False
        return True


@dataclass(frozen=True)
class SiteIdCondition:
    """Exact match or membership test on the subscription's site."""

    equals: Any = None
    in_: frozenset | None = None

    kind: ClassVar[ConditionKind] = ConditionKind.SITE_ID
    operators: ClassVar[frozenset[str]] = frozenset({"equals", "in"})

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "SiteIdCondition":
        equals = raw.get("equals")
        members = raw.get("in")
        if isinstance(equals, (list, dict)):
            raise MalformedConditionError(f"siteId.equals must be a scalar, got {equals!r}")
        if members is not None:
            if not isinstance(members, (list, tuple)):
                raise MalformedConditionError(f"siteId.in must be a list, got {members!r}")
            if any(isinstance(item, (list, dict)) for item in members):
                raise MalformedConditionError("siteId.in must only contain scalars")
            members = frozenset(members)
        return cls(equals=equals, in_=members)

    def matches(self, subscription: SubscriberRecord) -> bool:
        if self.equals is not None and subscription.site_id != self.equals:
            return False
        if self.in_ is not None and subscription.site_id not in self.in_:
            return False
        return True


@dataclass(frozen=True)
class RejectAll:
    """Stand-in for a predicate that failed to parse."""

    source: str
    reason: str

    def matches(self, subscription: SubscriberRecord) -> bool:
        return False


_PARSERS: Dict[ConditionKind, Any] = {
    ConditionKind.USER_AGENT: UserAgentCondition,
    ConditionKind.CREATED_AT: CreatedAtCondition,
    ConditionKind.SITE_ID: SiteIdCondition,
}

assert set(_PARSERS) == set(ConditionKind), "every condition kind needs an evaluator"


T = TypeVar("T", bound=SubscriberRecord)


@dataclass(frozen=True)
class SegmentRule:
    """Compiled rule set; all conditions must match."""

    conditions: Tuple[Any, ...] = field(default_factory=tuple)

    def matches(self, subscription: SubscriberRecord) -> bool:
        return all(condition.matches(subscription) for condition in self.conditions)

    def filter(self, subscriptions: Iterable[T]) -> List[T]:
        return [subscription for subscription in subscriptions if self.matches(subscription)]


def compile_conditions(raw: Mapping[str, Any] | None) -> SegmentRule:
    """Parse a stored conditions object into a :class:`SegmentRule`."""

    if not raw:
        return SegmentRule()
    if not isinstance(raw, Mapping):
        logger.warning("Segment conditions are not an object", conditions=repr(raw))
        return SegmentRule((RejectAll("*", "conditions must be an object"),))

    conditions: List[Any] = []
    for key, predicate in raw.items():
        try:
            kind = ConditionKind(key)
        except ValueError:
            logger.debug("Ignoring unknown segment condition kind", kind=key)
            continue
        if not isinstance(predicate, Mapping):
            conditions.append(RejectAll(key, "predicate must be an object"))
            continue
        try:
            conditions.append(_PARSERS[kind].parse(predicate))
        except MalformedConditionError as exc:
            logger.warning("Malformed segment condition", kind=key, error=str(exc))
            conditions.append(RejectAll(key, str(exc)))
    return SegmentRule(tuple(conditions))


def matches(subscription: SubscriberRecord, conditions: Mapping[str, Any] | None) -> bool:
    """Evaluate ``conditions`` against a single subscription."""

    return compile_conditions(conditions).matches(subscription)


def validate_conditions(raw: Any) -> List[str]:
    """Return human-readable problems with a conditions object (empty when valid)."""

    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        return ["Conditions must be an object"]

    errors: List[str] = []
    for key, predicate in raw.items():
        try:
            kind = ConditionKind(key)
        except ValueError:
            errors.append(f"Unknown condition kind: {key}")
            continue
        if not isinstance(predicate, Mapping):
            errors.append(f"Condition '{key}' must be an object")
            continue
        parser = _PARSERS[kind]
        unknown = sorted(set(predicate) - parser.operators)
        if unknown:
            errors.append(f"Unknown operators for '{key}': {', '.join(unknown)}")
        try:
            parser.parse(predicate)
        except MalformedConditionError as exc:
            errors.append(f"Condition '{key}': {exc}")
    return errors


__all__ = [
    "ConditionKind",
    "CreatedAtCondition",
    "MalformedConditionError",
    "RejectAll",
    "SegmentRule",
    "SiteIdCondition",
    "SubscriberRecord",
    "UserAgentCondition",
    "compile_conditions",
    "ensure_utc",
    "matches",
    "validate_conditions",
]

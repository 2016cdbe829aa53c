"""
Privacy controls for outward-facing reads.

Records handed to the transform are Events or Summaries. A redaction table
declares which field identifies the actor for each record shape; payload
maps (event_data, actor_properties, summary_data) are walked for masked and
removed keys. Key matching ignores case, `_` and `-`.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, NamedTuple
import time
import structlog
from cryptography.hazmat.primitives import hashes, hmac
from pydantic import BaseModel
from .adapters.base import EventStore
from .errors import InvalidSubjectRequestError
from .models import (
    ENTITY_TYPE_USER,
    AccessLevel,
    Event,
    RecordType,
    SubjectRequestType,
    Summary,
    ensure_utc,
    utcnow,
)

log = structlog.get_logger()


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


# Keys whose values are masked
SENSITIVE_KEYS = frozenset(
    _normalize_key(k)
    for k in (
        "email", "phone", "ssn", "creditCard", "password", "token",
        "secret", "apiKey", "ipAddress", "location", "address",
    )
)

# Keys dropped entirely when personal data is restricted
PERSONAL_DATA_KEYS = frozenset(
    _normalize_key(k)
    for k in (
        "email", "phone", "address", "location", "ipAddress",
        "actorProperties", "personalInfo", "contactInfo", "privateData",
    )
)


class RedactionRule(NamedTuple):
    """Per-shape redaction rule: which field identifies the actor."""
    actor_field: str
    # When set, the actor field only identifies an actor for this entity_type
    entity_type: str | None = None


REDACTION_RULES: dict[type, RedactionRule] = {
    Event: RedactionRule(actor_field="actor_id"),
    Summary: RedactionRule(actor_field="entity_id", entity_type=ENTITY_TYPE_USER),
}


class PrivacyOptions(BaseModel):
    """Per-request privacy switches."""
    anonymize_user_data: bool = False
    restrict_personal_data: bool = False
    mask_sensitive_fields: bool = False
    exclude_user_data: bool = False


def mask_value(value: Any) -> str:
    """
    Mask a sensitive value.

    Email addresses keep the first character of the local part and domain,
    longer strings keep two characters at each end, anything else is `***`.
    """
    if isinstance(value, str):
        if "@" in value:
            parts = value.split("@")
            if len(parts) == 2:
                local, domain = parts
                return f"{local[:1]}***@{domain[:1]}***"
        elif len(value) > 4:
            return f"{value[:2]}***{value[-2:]}"
    return "***"


def mask_sensitive_fields(obj: Any) -> Any:
    """Return a copy of `obj` with sensitive keys masked at any depth."""
    if isinstance(obj, dict):
        return {
            key: mask_value(value) if _normalize_key(key) in SENSITIVE_KEYS else mask_sensitive_fields(value)
            for key, value in obj.items()
        }
    if isinstance(obj, list):
        return [mask_sensitive_fields(item) for item in obj]
    return obj


def remove_personal_data(obj: Any) -> Any:
    """Return a copy of `obj` without personal data keys at any depth."""
    if isinstance(obj, dict):
        return {
            key: remove_personal_data(value)
            for key, value in obj.items()
            if _normalize_key(key) not in PERSONAL_DATA_KEYS
        }
    if isinstance(obj, list):
        return [remove_personal_data(item) for item in obj]
    return obj


class Pseudonymizer:
    """
    Replaces actor ids with pseudonymous tokens.

    Without a key, tokens are `anon_<first 8 chars>_<epoch ms>` and differ
    between calls, so they cannot be joined on. With a key, tokens are a
    truncated HMAC-SHA256 of the id: stable across calls and free of any
    prefix of the real id.
    """

    def __init__(self, key: str | bytes | None = None, clock: Callable[[], float] = time.time):
        if isinstance(key, str):
            key = key.encode("utf-8")
        self._key = key or None
        self._clock = clock

    @property
    def stable(self) -> bool:
        return self._key is not None

    def pseudonymize(self, actor_id: str) -> str:
        if self._key is None:
            return f"anon_{actor_id[:8]}_{int(self._clock() * 1000)}"
        mac = hmac.HMAC(self._key, hashes.SHA256())
        mac.update(actor_id.encode("utf-8"))
        return f"anon_{mac.finalize().hex()[:16]}"


def _rule_for(record: Any) -> RedactionRule:
    for model, rule in REDACTION_RULES.items():
        if isinstance(record, model):
            return rule
    raise TypeError(f"No redaction rule for record type {type(record).__name__}")


def _actor_field(view: dict[str, Any], rule: RedactionRule) -> str | None:
    if rule.actor_field not in view:
        return None
    if rule.entity_type is not None and view.get("entity_type") != rule.entity_type:
        return None
    return rule.actor_field


class PrivacyTransform:
    """Builds privacy-filtered views of events and summaries by access level."""

    def __init__(self, pseudonymizer: Pseudonymizer | None = None):
        self.pseudonymizer = pseudonymizer or Pseudonymizer()

    def apply(
        self,
        records: Iterable[Event | Summary],
        access_level: AccessLevel | str,
        requester_id: str | None = None,
        entity_id: str | None = None,
        options: PrivacyOptions | None = None,
    ) -> list[dict[str, Any]]:
        """
        Apply privacy controls to a batch of records.

        Input records are never modified; each result is a new dict.

        Args:
            records: Events and/or summaries
            access_level: public, user, organizer or admin
            requester_id: Actor id of the caller (user level keeps own data)
            entity_id: Entity the caller is scoped to (organizer level)
            options: Privacy switches for this request

        Returns:
            Transformed record views
        """
        opts = options or PrivacyOptions()
        try:
            level = AccessLevel(access_level)
        except ValueError:
            log.warning("privacy.unknown_access_level", access_level=str(access_level), fallback="public")
            level = AccessLevel.PUBLIC

        views = []
        for record in records:
            rule = _rule_for(record)
            view = record.model_dump()
            if level == AccessLevel.PUBLIC:
                view = self._public(view, rule, opts)
            elif level == AccessLevel.USER:
                view = self._user(view, rule, requester_id, opts)
            elif level == AccessLevel.ORGANIZER:
                view = self._organizer(view, rule, opts)
            else:
                view = self._admin(view, opts)
            views.append(view)

        log.debug(
            "privacy.applied",
            access_level=level.value,
            records=len(views),
            entity_id=entity_id,
            **opts.model_dump(),
        )
        return views

    def _redact_actor(self, view: dict[str, Any], field: str, opts: PrivacyOptions) -> None:
        if opts.exclude_user_data:
            del view[field]
        elif opts.anonymize_user_data and view[field] is not None:
            view[field] = self.pseudonymizer.pseudonymize(str(view[field]))

    def _public(self, view: dict[str, Any], rule: RedactionRule, opts: PrivacyOptions) -> dict[str, Any]:
        field = _actor_field(view, rule)
        if field is not None:
            self._redact_actor(view, field, opts)
        if opts.mask_sensitive_fields:
            view = mask_sensitive_fields(view)
        if opts.restrict_personal_data:
            view = remove_personal_data(view)
        return view

    def _user(
        self,
        view: dict[str, Any],
        rule: RedactionRule,
        requester_id: str | None,
        opts: PrivacyOptions,
    ) -> dict[str, Any]:
        field = _actor_field(view, rule)
        # The requester's own records pass through unredacted
        if field is not None and view[field] != requester_id:
            self._redact_actor(view, field, opts)
        if opts.mask_sensitive_fields:
            view = mask_sensitive_fields(view)
        return view

    def _organizer(self, view: dict[str, Any], rule: RedactionRule, opts: PrivacyOptions) -> dict[str, Any]:
        field = _actor_field(view, rule)
        if opts.anonymize_user_data and field is not None and view[field] is not None:
            view[field] = self.pseudonymizer.pseudonymize(str(view[field]))
        if opts.mask_sensitive_fields:
            view = mask_sensitive_fields(view)
        return view

    def _admin(self, view: dict[str, Any], opts: PrivacyOptions) -> dict[str, Any]:
        if opts.mask_sensitive_fields:
            return mask_sensitive_fields(view)
        return view


class SubjectRightsService:
    """Data subject requests: access (export), deletion (forget), rectification."""

    def __init__(self, store: EventStore, pseudonymizer: Pseudonymizer | None = None):
        self._store = store
        self._pseudonymizer = pseudonymizer or Pseudonymizer()

    async def handle_request(self, actor_id: str, request_type: SubjectRequestType | str) -> dict[str, Any]:
        """
        Dispatch a data subject request.

        Raises:
            InvalidSubjectRequestError: If the request type is not supported
        """
        try:
            kind = SubjectRequestType(request_type)
        except ValueError:
            raise InvalidSubjectRequestError(f"Invalid request type: {request_type}")

        log.info("subject_request.received", request_type=kind.value)
        if kind == SubjectRequestType.ACCESS:
            return await self.export(actor_id)
        if kind == SubjectRequestType.DELETION:
            return await self.forget(actor_id)
        return await self.rectify(actor_id)

    async def export(self, actor_id: str) -> dict[str, Any]:
        """All events performed by the actor and all summaries about them."""
        events = await self._store.find_by_actor(actor_id)
        summaries = await self._store.find_summaries(entity_id=actor_id, entity_type=ENTITY_TYPE_USER)
        return {
            "analytics": events,
            "summaries": summaries,
            "export_timestamp": utcnow(),
        }

    async def forget(self, actor_id: str) -> dict[str, Any]:
        """
        Anonymize the actor in place.

        Rows are kept so aggregate counts over any window stay unchanged.
        """
        affected = await self._store.bulk_anonymize_actor(actor_id)
        summaries = await self._store.anonymize_summary_entity(actor_id, ENTITY_TYPE_USER)
        log.info("subject_request.forgotten", affected_events=affected, affected_summaries=summaries)
        return {
            "message": "User data anonymized for analytics purposes",
            "affected_rows": affected,
            "affected_summaries": summaries,
        }

    async def rectify(self, actor_id: str) -> dict[str, Any]:
        """Rectification has no defined effect yet; nothing is changed."""
        log.info("subject_request.rectification_noop")
        return {
            "status": "not_implemented",
            "message": "Rectification is not defined yet; no data was changed",
            "actor_id": actor_id,
        }

    async def compliance_report(self, now: datetime | None = None) -> dict[str, Any]:
        """Record counts and tracked-actor totals for privacy reporting."""
        now = ensure_utc(now or utcnow())
        events = RecordType.EVENT_ANALYTICS.value
        return {
            "total_analytics_records": await self._store.count_records(events),
            "recent_records": await self._store.count_records(events, since=now - timedelta(days=30)),
            "unique_actors_tracked": await self._store.distinct_actor_count(),
            "stable_pseudonyms": self._pseudonymizer.stable,
            "last_updated": now,
        }

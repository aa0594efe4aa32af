"""Event dispatcher and replay tests"""
import pytest
from unittest.mock import patch
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY

from app.core.exceptions import InvalidWebhookPayload
from app.db.redis import user_lock_key
from app.models.audit_log import AuditLogEntry
from app.models.enums import SubscriptionTier
from app.models.subscription import Subscription
from app.models.subscription_plan import SubscriptionPlan
from app.models.webhook_event import WebhookEvent
from app.services.event_dispatcher import (
    EVENT_HANDLERS, dispatch_event, event_id_for, metric_event_type, parse_envelope
)
from app.services.replay_service import replay_webhook_events
from app.services.subscription_repository import (
    create_subscription, get_entitlement_summary, upsert_subscription_plan_by_tier
)
from app.services.tier_mapper import TierMapper
from conftest import DAY_MS, now_ms


def event_count(event_type: str, outcome: str) -> float:
    return REGISTRY.get_sample_value(
        "entitlements_webhook_events_total", {"event_type": event_type, "outcome": outcome}
    ) or 0


def audit_entries(db, user_id=None):
    query = db.query(AuditLogEntry)
    if user_id:
        query = query.filter(AuditLogEntry.user_id == user_id)
    return query.all()


def logged_event(db, raw_event):
    return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id_for(raw_event)).one()


@pytest.mark.critical
class TestDispatch:

    def test_initial_purchase_for_known_user(self, db_session, test_user, make_event):
        raw = make_event(app_user_id=test_user.id)
        result = dispatch_event(raw, db_session)

        assert result == {"success": True, "action": "activated"}
        summary = get_entitlement_summary(test_user.id, db_session)
        assert summary.subscription_tier == "PREMIUM"
        assert summary.active_subscription.original_transaction_id == "T1"
        assert summary.active_subscription.interval == "YEARLY"

        entries = audit_entries(db_session, test_user.id)
        assert len(entries) == 1
        assert entries[0].action == "REVENUECAT_WEBHOOK"
        assert entries[0].entity_type == "subscription"
        assert entries[0].entity_id == "T1-initial_purchase"
        assert entries[0].entry_metadata["event_type"] == "INITIAL_PURCHASE"
        assert entries[0].entry_metadata["price"] == 99.99

        logged = logged_event(db_session, raw)
        assert logged.processed is True
        assert logged.outcome == "processed"

    def test_unknown_user_is_acknowledged_without_audit(self, db_session, test_user, make_event):
        raw = make_event(app_user_id="ghost")
        result = dispatch_event(raw, db_session)

        assert result["success"] is False
        assert result["message"] == "User not found"
        assert result["app_user_id"] == "ghost"
        assert audit_entries(db_session) == []
        assert db_session.query(Subscription).count() == 0
        assert logged_event(db_session, raw).outcome == "user_not_found"

    def test_unknown_event_type_is_audited_but_not_applied(self, db_session, test_user, make_event):
        before = event_count("other", "ignored")
        raw = make_event("SUBSCRIPTION_PAUSED", app_user_id=test_user.id)
        result = dispatch_event(raw, db_session)

        assert result == {"success": True, "action": "ignored"}
        assert db_session.query(Subscription).count() == 0
        assert len(audit_entries(db_session, test_user.id)) == 1
        assert logged_event(db_session, raw).outcome == "ignored"
        assert event_count("other", "ignored") == before + 1
        assert event_count("SUBSCRIPTION_PAUSED", "ignored") == 0

    def test_redelivery_is_idempotent(self, db_session, test_user, make_event):
        raw = make_event(app_user_id=test_user.id, id="evt-1")
        for _ in range(3):
            assert dispatch_event(dict(raw), db_session)["success"] is True

        assert db_session.query(Subscription).count() == 1
        logged = db_session.query(WebhookEvent).filter(WebhookEvent.event_id == "evt-1").one()
        assert logged.delivery_count == 3
        db_session.refresh(test_user)
        assert test_user.subscription_tier == "PREMIUM"

    def test_at_most_one_active_subscription(self, db_session, test_user, make_event):
        for otid, product in [("T1", "premium_monthly"), ("T2", "family_yearly"), ("T3", "premium_yearly")]:
            dispatch_event(make_event(app_user_id=test_user.id, original_transaction_id=otid, product_id=product), db_session)

        active = db_session.query(Subscription).filter(
            Subscription.user_id == test_user.id, Subscription.status == "ACTIVE"
        ).all()
        assert [sub.original_transaction_id for sub in active] == ["T3"]
        assert db_session.query(Subscription).count() == 3

    def test_tier_mapper_can_be_injected(self, db_session, test_user, make_event):
        mapper = TierMapper({"sku_basic": SubscriptionTier.BASIC})
        dispatch_event(make_event(app_user_id=test_user.id, product_id="sku_basic"), db_session, tier_mapper=mapper)
        db_session.refresh(test_user)
        assert test_user.subscription_tier == "BASIC"


@pytest.mark.high
class TestFailures:

    def test_handler_failure_rolls_back_and_is_acknowledged(self, db_session, test_user, make_event):
        def failing_handler(user, event, tier, db):
            create_subscription(
                db, user_id=user.id, plan_id="missing", original_transaction_id=event.lineage_id,
                provider="APPLE", status="ACTIVE", interval="YEARLY",
                current_period_start=event.purchased_at,
            )
            raise RuntimeError("boom")

        raw = make_event(app_user_id=test_user.id)
        with patch.dict(EVENT_HANDLERS, {"INITIAL_PURCHASE": failing_handler}):
            result = dispatch_event(raw, db_session)

        assert result == {"success": False, "error": "Internal error"}
        assert db_session.query(Subscription).count() == 0
        assert audit_entries(db_session) == []
        logged = logged_event(db_session, raw)
        assert logged.outcome == "error"
        assert logged.processed is False
        assert logged.error_message == "boom"

    def test_malformed_event_is_stored_as_invalid(self, db_session, test_user, make_event):
        before = event_count("INITIAL_PURCHASE", "invalid")
        raw = make_event(app_user_id=test_user.id, purchased_at_ms="yesterday")
        result = dispatch_event(raw, db_session)

        assert result == {"success": False, "error": "Invalid event"}
        logged = logged_event(db_session, raw)
        assert logged.event_type == "INITIAL_PURCHASE"
        assert logged.app_user_id == test_user.id
        assert logged.outcome == "invalid"
        assert logged.processed is False
        assert "purchased_at_ms" in logged.error_message
        assert logged.payload["purchased_at_ms"] == "yesterday"
        assert db_session.query(Subscription).count() == 0
        assert audit_entries(db_session) == []
        assert event_count("INITIAL_PURCHASE", "invalid") == before + 1

    def test_event_without_type_is_stored_as_invalid(self, db_session, test_user):
        raw = {"app_user_id": test_user.id, "transaction_id": "T9"}
        result = dispatch_event(raw, db_session)

        assert result == {"success": False, "error": "Invalid event"}
        logged = logged_event(db_session, raw)
        assert logged.event_type == "unknown"
        assert logged.outcome == "invalid"

    def test_invalid_events_are_not_replayed(self, db_session, test_user, make_event):
        dispatch_event(make_event(app_user_id=test_user.id, price="not-a-price"), db_session)
        assert replay_webhook_events(db_session) == []

    def test_plan_created_by_another_worker_does_not_fail_event(self, db_session, test_user, make_event):
        upsert_subscription_plan_by_tier("PREMIUM", db_session)
        db_session.commit()

        with patch("app.services.subscription_repository.find_subscription_plan_by_tier", return_value=None):
            result = dispatch_event(make_event(app_user_id=test_user.id), db_session)

        assert result == {"success": True, "action": "activated"}
        assert db_session.query(SubscriptionPlan).count() == 1
        db_session.refresh(test_user)
        assert test_user.subscription_tier == "PREMIUM"

    def test_lock_timeout_is_recorded_then_replayed(self, db_session, test_user, make_event, mock_redis):
        mock_redis.set(user_lock_key(test_user.id), "held-by-another-worker")
        raw = make_event(app_user_id=test_user.id)
        with patch("app.core.config.settings.WEBHOOK_LOCK_WAIT", 0):
            result = dispatch_event(raw, db_session)

        assert result["success"] is False
        assert logged_event(db_session, raw).outcome == "error"
        assert db_session.query(Subscription).count() == 0

        mock_redis.delete(user_lock_key(test_user.id))
        replayed = replay_webhook_events(db_session)
        assert len(replayed) == 1
        assert replayed[0]["result"] == {"success": True, "action": "activated"}
        assert replayed[0]["app_user_id"] == test_user.id

        logged = logged_event(db_session, raw)
        assert logged.outcome == "processed"
        assert logged.delivery_count == 2
        assert replay_webhook_events(db_session) == []

    def test_lock_is_released_after_dispatch(self, db_session, test_user, make_event, mock_redis):
        dispatch_event(make_event(app_user_id=test_user.id), db_session)
        assert mock_redis.get(user_lock_key(test_user.id)) is None


@pytest.mark.high
class TestUserResolution:

    def test_resolves_by_stored_correlation_id(self, db_session, other_user, make_event):
        result = dispatch_event(make_event(app_user_id="$RCAnonymousID:abc123"), db_session)
        assert result["success"] is True
        assert db_session.query(Subscription).filter(Subscription.user_id == other_user.id).count() == 1

    def test_resolves_through_aliases(self, db_session, other_user, make_event):
        raw = make_event(app_user_id="new-login-id", aliases=["$RCAnonymousID:abc123"])
        assert dispatch_event(raw, db_session)["success"] is True
        db_session.refresh(other_user)
        assert other_user.subscription_tier == "PREMIUM"
        # An existing correlation id is never overwritten
        assert other_user.revenuecat_user_id == "$RCAnonymousID:abc123"

    def test_resolves_through_original_app_user_id(self, db_session, test_user, make_event):
        raw = make_event(app_user_id="$RCAnonymousID:later", original_app_user_id=test_user.id)
        assert dispatch_event(raw, db_session)["success"] is True


@pytest.mark.medium
class TestEnvelope:

    def test_parse_envelope_returns_event(self):
        assert parse_envelope({"api_version": "1.0", "event": {"type": "RENEWAL"}}) == {"type": "RENEWAL"}

    @pytest.mark.parametrize("body", [None, [], "event", {}, {"event": None}, {"event": "RENEWAL"}])
    def test_parse_envelope_rejects_bad_bodies(self, body):
        with pytest.raises(InvalidWebhookPayload):
            parse_envelope(body)

    def test_event_id_prefers_provider_id(self):
        assert event_id_for({"id": "abc", "type": "RENEWAL"}) == "abc"

    def test_event_id_hash_is_stable(self):
        first = event_id_for({"type": "RENEWAL", "app_user_id": "u1"})
        second = event_id_for({"app_user_id": "u1", "type": "RENEWAL"})
        assert first == second
        assert first.startswith("sha256:")


    def test_event_id_derived_from_transaction_type_and_timestamp(self):
        base = {"type": "RENEWAL", "transaction_id": "T1-2", "event_timestamp_ms": 1700000000000, "price": 9.99}
        assert event_id_for(base) == event_id_for({**base, "price": 19.99, "store": "APP_STORE"})
        assert event_id_for(base) != event_id_for({**base, "type": "CANCELLATION"})
        assert event_id_for(base) != event_id_for({**base, "event_timestamp_ms": 1700000000001})

    def test_event_id_falls_back_to_purchase_timestamp(self):
        base = {"type": "RENEWAL", "transaction_id": "T1-2", "purchased_at_ms": 1700000000000}
        assert event_id_for(base) != event_id_for({**base, "purchased_at_ms": 1700000000001})

    def test_metric_label_buckets_unhandled_types(self):
        assert metric_event_type("RENEWAL") == "RENEWAL"
        assert metric_event_type("TRANSFER") == "other"
        assert metric_event_type("x" * 500) == "other"


@pytest.mark.high
class TestOutOfOrderDelivery:

    def test_renewal_after_its_own_expiration_stays_expired(self, db_session, test_user, make_event):
        first_expiry = now_ms() + 30 * DAY_MS
        second_expiry = first_expiry + 30 * DAY_MS
        dispatch_event(make_event(app_user_id=test_user.id, expiration_at_ms=first_expiry), db_session)
        dispatch_event(make_event("EXPIRATION", app_user_id=test_user.id, expiration_at_ms=second_expiry), db_session)

        result = dispatch_event(make_event("RENEWAL", app_user_id=test_user.id, expiration_at_ms=second_expiry), db_session)

        assert result == {"success": True, "action": "stale"}
        assert db_session.query(Subscription).one().status == "EXPIRED"
        db_session.refresh(test_user)
        assert test_user.subscription_tier == "FREE"


@pytest.mark.medium
class TestTracing:

    def setup_method(self):
        self.exporter = InMemorySpanExporter()
        self.provider = TracerProvider()
        self.provider.add_span_processor(SimpleSpanProcessor(self.exporter))

    def test_dispatch_span_carries_event_user_and_outcome(self, db_session, test_user, make_event):
        raw = make_event(app_user_id=test_user.id, id="evt-span")
        with patch("app.core.otel.trace.get_tracer", self.provider.get_tracer):
            dispatch_event(raw, db_session)

        (span,) = self.exporter.get_finished_spans()
        assert span.name == "webhook.dispatch"
        assert span.attributes["entitlements.event_type"] == "INITIAL_PURCHASE"
        assert span.attributes["entitlements.event_id"] == "evt-span"
        assert span.attributes["entitlements.user_id"] == test_user.id
        assert span.attributes["entitlements.outcome"] == "processed"
        assert span.attributes["entitlements.action"] == "activated"

    def test_failed_dispatch_marks_span_as_error(self, db_session, test_user, make_event):
        def failing_handler(user, event, tier, db):
            raise RuntimeError("boom")

        with patch("app.core.otel.trace.get_tracer", self.provider.get_tracer):
            with patch.dict(EVENT_HANDLERS, {"INITIAL_PURCHASE": failing_handler}):
                dispatch_event(make_event(app_user_id=test_user.id), db_session)

        (span,) = self.exporter.get_finished_spans()
        assert span.attributes["entitlements.outcome"] == "error"
        assert span.status.status_code == StatusCode.ERROR


@pytest.mark.medium
def test_replay_unknown_event_id_raises(db_session):
    with pytest.raises(ValueError):
        replay_webhook_events(db_session, event_id="missing")

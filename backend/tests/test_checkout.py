"""Checkout orchestration tests"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from autopay.core.errors import (
    ConfigInactive, ConfigNotFound, GatewayError, OrphanedGatewaySubscription, RequestValidationFailed
)
from autopay.models import Subscription, SubscriptionStatus
from autopay.schemas.subscriptions import CheckoutRequest
from autopay.services import subscription_store
from autopay.services.subscription_service import create_checkout

from conftest import GATEWAY_SUBSCRIPTION_ID, PLAN_ID

DAY = 24 * 60 * 60


def checkout_request(**overrides) -> CheckoutRequest:
    data = {
        "user_id": uuid.uuid4(),
        "app_name": "matchbox",
        "phone": "9876543210",
        "email": "user@matchbox.app",
        "plan_id": PLAN_ID,
    }
    data.update(overrides)
    return CheckoutRequest(**data)


def now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def sent_payload(fake_gateway) -> dict:
    return fake_gateway.create_subscription.call_args[0][0]


@pytest.mark.critical
class TestCheckoutPayload:
    """Test the subscription payload sent to Razorpay"""

    def test_defaults(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test default charge, delay, count, quantity and expiry"""
        create_checkout(checkout_request(), gateway_cache, db_session)
        payload = sent_payload(fake_gateway)

        assert payload["plan_id"] == PLAN_ID
        assert payload["quantity"] == 1
        assert payload["customer_notify"] is False
        assert payload["total_count"] == 120
        assert payload["addons"] == [
            {"item": {"name": "Initial Charge", "amount": 100, "currency": "INR"}}
        ]
        assert abs(payload["start_at"] - (now_ts() + DAY)) < 60
        assert abs(payload["expire_by"] - (now_ts() + 7 * DAY)) < 60
        assert "notes" not in payload

    def test_explicit_initial_charge_in_rupees(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test initial_charge_amount is converted to paise"""
        create_checkout(checkout_request(initial_charge_amount=5), gateway_cache, db_session)
        assert sent_payload(fake_gateway)["addons"][0]["item"]["amount"] == 500

    @pytest.mark.parametrize("amount", [0, -10])
    def test_non_positive_initial_charge_omits_addon(self, test_config, gateway_cache, fake_gateway, db_session, amount):
        """Test zero or negative initial charge sends no addon"""
        create_checkout(checkout_request(initial_charge_amount=amount), gateway_cache, db_session)
        assert "addons" not in sent_payload(fake_gateway)

    def test_zero_delay_starts_in_one_hour(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test delay 0 without a zero charge starts an hour from now"""
        create_checkout(checkout_request(first_charge_delay_days=0), gateway_cache, db_session)
        assert abs(sent_payload(fake_gateway)["start_at"] - (now_ts() + 3600)) < 60

    def test_custom_delay(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test a positive delay moves the first recurring charge"""
        create_checkout(checkout_request(first_charge_delay_days=3), gateway_cache, db_session)
        assert abs(sent_payload(fake_gateway)["start_at"] - (now_ts() + 3 * DAY)) < 60

    def test_negative_delay_uses_default(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test a negative delay falls back to one day"""
        create_checkout(checkout_request(first_charge_delay_days=-2), gateway_cache, db_session)
        assert abs(sent_payload(fake_gateway)["start_at"] - (now_ts() + DAY)) < 60

    def test_immediate_plan_charge(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test 0/0 charges the plan amount now and starts after one billing period

        An explicit 0/0 opts into charging the full plan amount as the addon, so
        the addon is present here even though a plain zero charge omits it.
        """
        create_checkout(
            checkout_request(initial_charge_amount=0, first_charge_delay_days=0),
            gateway_cache, db_session
        )
        payload = sent_payload(fake_gateway)

        fake_gateway.fetch_plan.assert_any_call(PLAN_ID)
        assert payload["addons"][0]["item"]["amount"] == 49900
        assert abs(payload["start_at"] - (now_ts() + 30 * DAY)) < 60

    @pytest.mark.parametrize("period,days", [
        ("daily", 1), ("weekly", 7), ("monthly", 30), ("yearly", 365), ("fortnightly", 30),
    ])
    def test_immediate_charge_period_mapping(self, test_config, gateway_cache, fake_gateway, plan, db_session, period, days):
        """Test billing periods map to first-charge delays"""
        fake_gateway.fetch_plan.side_effect = lambda plan_id: {**plan, "id": plan_id, "period": period}
        create_checkout(
            checkout_request(initial_charge_amount=0, first_charge_delay_days=0),
            gateway_cache, db_session
        )
        assert abs(sent_payload(fake_gateway)["start_at"] - (now_ts() + days * DAY)) < 60

    def test_explicit_values_passed_through(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test explicit start_at, total_count, quantity and notes"""
        start_at = now_ts() + 10 * DAY
        create_checkout(
            checkout_request(start_at=start_at, total_count=12, quantity=2, notes={"ref": "abc"}),
            gateway_cache, db_session
        )
        payload = sent_payload(fake_gateway)
        assert payload["start_at"] == start_at
        assert payload["total_count"] == 12
        assert payload["quantity"] == 2
        assert payload["notes"] == {"ref": "abc"}

    def test_plan_id_is_trimmed(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test surrounding whitespace is stripped from plan_id"""
        create_checkout(checkout_request(plan_id=f"  {PLAN_ID}  "), gateway_cache, db_session)
        assert sent_payload(fake_gateway)["plan_id"] == PLAN_ID


@pytest.mark.critical
class TestCheckoutPersistence:
    """Test the local record and returned summary"""

    def test_returns_summary_and_persists(self, test_config, gateway_cache, db_session):
        """Test the local row mirrors the gateway subscription and plan"""
        result = create_checkout(checkout_request(notes={"ref": "abc"}, max_amount=99900), gateway_cache, db_session)

        assert result["gateway_subscription_id"] == GATEWAY_SUBSCRIPTION_ID
        assert result["short_url"] == "https://rzp.io/i/test123"
        assert result["status"] == SubscriptionStatus.CREATED

        subscription = db_session.query(Subscription).filter(Subscription.id == result["subscription_id"]).one()
        assert subscription.razorpay_config_id == test_config.id
        assert subscription.razorpay_plan_id == PLAN_ID
        assert subscription.amount == 49900
        assert subscription.currency == "INR"
        assert subscription.frequency == "monthly"
        assert subscription.total_count == 120
        assert subscription.max_amount == 99900
        assert subscription.metadata_ == {"ref": "abc"}

    def test_repeated_request_creates_new_record(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test retrying the same checkout creates a second, distinct subscription"""
        created = fake_gateway.create_subscription.return_value
        fake_gateway.create_subscription.side_effect = [
            {**created, "id": "sub_1", "short_url": "https://rzp.io/i/one"},
            {**created, "id": "sub_2", "short_url": "https://rzp.io/i/two"},
        ]
        request = checkout_request()

        first = create_checkout(request, gateway_cache, db_session)
        second = create_checkout(request, gateway_cache, db_session)

        assert first["subscription_id"] != second["subscription_id"]
        assert (first["gateway_subscription_id"], second["gateway_subscription_id"]) == ("sub_1", "sub_2")
        assert fake_gateway.create_subscription.call_count == 2
        assert db_session.query(Subscription).filter(Subscription.user_id == request.user_id).count() == 2

    def test_metadata_defaults_to_empty(self, test_config, gateway_cache, db_session):
        """Test records without notes store an empty metadata object"""
        result = create_checkout(checkout_request(), gateway_cache, db_session)
        subscription = db_session.query(Subscription).filter(Subscription.id == result["subscription_id"]).one()
        assert subscription.metadata_ == {}

    def test_persistence_failure_is_orphan(self, test_config, gateway_cache, db_session, caplog):
        """Test a failed insert after gateway creation is logged and reported as orphaned"""
        caplog.set_level(logging.ERROR)
        with patch.object(subscription_store, "insert", side_effect=SQLAlchemyError("db down")):
            with pytest.raises(OrphanedGatewaySubscription) as exc_info:
                create_checkout(checkout_request(), gateway_cache, db_session)

        assert exc_info.value.gateway_subscription_id == GATEWAY_SUBSCRIPTION_ID
        assert "ORPHANED_GATEWAY_SUBSCRIPTION" in caplog.text
        assert GATEWAY_SUBSCRIPTION_ID in caplog.text


@pytest.mark.high
class TestCheckoutFailures:
    """Test config resolution and gateway failures"""

    def test_blank_plan_id_rejected_before_gateway(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test an empty plan id never reaches Razorpay"""
        with pytest.raises(RequestValidationFailed) as exc_info:
            create_checkout(checkout_request(plan_id="   "), gateway_cache, db_session)
        assert exc_info.value.field == "plan_id"
        fake_gateway.create_subscription.assert_not_called()

    def test_missing_config(self, gateway_cache, db_session):
        """Test checkout without a config for the app"""
        with pytest.raises(ConfigNotFound):
            create_checkout(checkout_request(), gateway_cache, db_session)

    def test_inactive_config(self, make_config, gateway_cache, fake_gateway, db_session):
        """Test an inactive config is refused"""
        make_config(is_active=False)
        with pytest.raises(ConfigInactive):
            create_checkout(checkout_request(), gateway_cache, db_session)
        fake_gateway.create_subscription.assert_not_called()

    def test_live_config_ignored_outside_production(self, make_config, gateway_cache, db_session):
        """Test app-name lookup uses the test environment in development"""
        make_config(environment="live")
        with pytest.raises(ConfigNotFound):
            create_checkout(checkout_request(), gateway_cache, db_session)

    def test_config_id_overrides_app_lookup(self, make_config, gateway_cache, db_session):
        """Test config_id selects the config directly"""
        live = make_config(app_name="other", environment="live")
        result = create_checkout(checkout_request(config_id=live.id), gateway_cache, db_session)
        subscription = db_session.query(Subscription).filter(Subscription.id == result["subscription_id"]).one()
        assert subscription.razorpay_config_id == live.id

    def test_unknown_config_id(self, test_config, gateway_cache, db_session):
        """Test an unknown config_id raises ConfigNotFound"""
        with pytest.raises(ConfigNotFound):
            create_checkout(checkout_request(config_id=uuid.uuid4()), gateway_cache, db_session)

    def test_gateway_error_names_plan(self, test_config, gateway_cache, fake_gateway, db_session):
        """Test upstream failures carry the plan id and persist nothing"""
        fake_gateway.create_subscription.side_effect = GatewayError("razorpay create subscription failed: bad plan")
        with pytest.raises(GatewayError) as exc_info:
            create_checkout(checkout_request(), gateway_cache, db_session)

        assert PLAN_ID in exc_info.value.message
        assert db_session.query(Subscription).count() == 0

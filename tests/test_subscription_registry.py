"""
Tests for the subscription registry and boundary schemas.
"""

import pytest
from pydantic import ValidationError

from dosepush.domain.schedule import ScheduleCreate
from dosepush.domain.subscription import SubscriptionCreate, endpoint_hash

ENDPOINT = "https://fcm.googleapis.com/fcm/send/abc123"


class TestSubscriptionRegistry:
    """Tests for SubscriptionRegistry."""

    @pytest.mark.asyncio
    async def test_upsert_creates_active_row(self, registry, subscription_payload):
        """Test registering a new browser."""
        subscription = await registry.upsert(1, 7, subscription_payload(ENDPOINT))

        assert subscription.is_active is True
        assert subscription.endpoint_hash == endpoint_hash(ENDPOINT)
        assert subscription.user_agent == "pytest-browser/1.0"

    @pytest.mark.asyncio
    async def test_reregistration_overwrites_keys(self, registry, subscription_payload):
        """Test that the same endpoint keeps one row with fresh keys."""
        first = await registry.upsert(1, 7, subscription_payload(ENDPOINT))
        payload = subscription_payload(ENDPOINT)
        second = await registry.upsert(1, 7, payload)

        assert second.id == first.id
        assert second.p256dh == payload.keys.p256dh
        assert len(await registry.list_active(1, 7)) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_then_resubscribe(self, registry, subscription_payload):
        """Test soft deletion and reactivation."""
        first = await registry.upsert(1, 7, subscription_payload(ENDPOINT))

        assert await registry.unsubscribe(1, 7, ENDPOINT) is True
        assert await registry.list_active(1, 7) == []
        assert await registry.unsubscribe(1, 7, ENDPOINT) is False

        again = await registry.upsert(1, 7, subscription_payload(ENDPOINT))
        assert again.id == first.id
        assert again.is_active is True

    @pytest.mark.asyncio
    async def test_same_endpoint_different_owners(self, registry, subscription_payload):
        """Test that uniqueness is per owner."""
        a = await registry.upsert(1, 7, subscription_payload(ENDPOINT))
        b = await registry.upsert(2, 7, subscription_payload(ENDPOINT))

        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_find_active_by_endpoint(self, registry, subscription_payload):
        """Test endpoint lookup used by the service worker."""
        await registry.upsert(3, 9, subscription_payload(ENDPOINT))

        found = await registry.find_active_by_endpoint(ENDPOINT)
        assert (found.workspace_id, found.user_id) == (3, 9)

        await registry.deactivate([found.id])
        assert await registry.find_active_by_endpoint(ENDPOINT) is None

    @pytest.mark.asyncio
    async def test_deactivate_nothing(self, registry):
        """Test that an empty id list is a no-op."""
        assert await registry.deactivate([]) == 0


class TestSubscriptionCreate:
    """Tests for subscription payload validation."""

    def test_valid_payload(self, subscription_payload):
        payload = subscription_payload(ENDPOINT)
        assert payload.endpoint == ENDPOINT

    @pytest.mark.parametrize("endpoint", ["not-a-url", "ftp://push.example.com/x", "https:///nohost"])
    def test_rejects_bad_endpoint(self, subscription_payload, endpoint):
        """Test that endpoints must be absolute http(s) URLs."""
        keys = subscription_payload(ENDPOINT).keys.model_dump()

        with pytest.raises(ValidationError):
            SubscriptionCreate(endpoint=endpoint, keys=keys)

    def test_rejects_short_p256dh(self, subscription_payload):
        """Test that p256dh must be a 65-byte point."""
        keys = subscription_payload(ENDPOINT).keys.model_dump()
        keys["p256dh"] = "BAAA"

        with pytest.raises(ValidationError):
            SubscriptionCreate(endpoint=ENDPOINT, keys=keys)

    def test_rejects_bad_auth(self, subscription_payload):
        """Test that auth must be 16 bytes."""
        keys = subscription_payload(ENDPOINT).keys.model_dump()
        keys["auth"] = "c2hvcnQ"

        with pytest.raises(ValidationError):
            SubscriptionCreate(endpoint=ENDPOINT, keys=keys)

    def test_rejects_control_characters(self, subscription_payload):
        """Test that endpoints with non-printable characters are refused."""
        keys = subscription_payload(ENDPOINT).keys.model_dump()

        with pytest.raises(ValidationError):
            SubscriptionCreate(endpoint=ENDPOINT + "\x01", keys=keys)

    def test_truncates_user_agent(self, subscription_payload):
        keys = subscription_payload(ENDPOINT).keys.model_dump()
        payload = SubscriptionCreate(endpoint=ENDPOINT, keys=keys, user_agent="x" * 400)

        assert len(payload.user_agent) == 255


class TestScheduleCreate:
    """Tests for schedule validation at the boundary."""

    BASE = {
        "workspace_id": 1,
        "user_id": 1,
        "medicine_name": "Ibuprofen",
        "dosage_value": "200",
        "dosage_unit": "mg",
    }

    @pytest.mark.parametrize("value,expected", [("08:00", "08:00:00"), ("23:59:59", "23:59:59"), ("00:00", "00:00:00")])
    def test_valid_time_of_day(self, value, expected):
        schedule = ScheduleCreate(time_of_day=value, **self.BASE)
        assert schedule.time_of_day == expected

    @pytest.mark.parametrize("value", ["24:00", "8:00", "12:60", "noon", "12:00:60", ""])
    def test_invalid_time_of_day(self, value):
        with pytest.raises(ValidationError):
            ScheduleCreate(time_of_day=value, **self.BASE)

    def test_unknown_unit(self):
        with pytest.raises(ValidationError):
            ScheduleCreate(time_of_day="08:00", **{**self.BASE, "dosage_unit": "spoonful"})

    def test_blank_message_becomes_none(self):
        schedule = ScheduleCreate(time_of_day="08:00", reminder_message="   ", **self.BASE)

        assert schedule.reminder_message is None
        assert schedule.to_model().reminder_message is None

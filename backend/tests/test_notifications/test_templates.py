"""
Tests for customer notification formatting.
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest

from src.services.notifications.templates import (
    RENDER_MODE_MARKDOWN,
    STATUS_TEMPLATES,
    format_delivery_reminder,
    format_status_notification,
)
from src.services.orders.enums import OrderStatus

ORDER_ID = uuid.UUID("7d0c5a4e-9a51-4f7e-9a43-2f6f7b1f2b11")


@pytest.fixture
def order():
    return SimpleNamespace(
        id=ORDER_ID,
        customer_id=424242,
        total_amount=Decimal("1234.50"),
        delivery_address="45 Highway 111, Palm Desert, CA 92260",
        phone_number=None,
    )


@pytest.fixture
def items():
    return [
        SimpleNamespace(product_id=1, product_name="Widget", quantity=2, total_price=Decimal("20.00")),
        SimpleNamespace(product_id=8, product_name=None, quantity=1, total_price=Decimal("1214.50")),
    ]


# ============================================================================
# Status messages
# ============================================================================


class TestStatusNotification:
    """Formatting is pure and covers every status."""

    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_every_status_has_a_message(self, order, items, status):
        message = format_status_notification(order, items, status)

        assert STATUS_TEMPLATES[status].title in message.text
        assert STATUS_TEMPLATES[status].body in message.text

    def test_message_contents(self, order, items):
        message = format_status_notification(order, items, OrderStatus.OUT_FOR_DELIVERY)

        assert message.recipient == "424242"
        assert message.render_mode == RENDER_MODE_MARKDOWN
        assert message.disable_notification is False
        assert f"Order ID: `{ORDER_ID}`" in message.text
        assert "• Widget (x2) - $20.00" in message.text
        assert "• Product #8 (x1) - $1,214.50" in message.text
        assert "*Total: $1,234.50*" in message.text
        assert "*Delivery Address:* 45 Highway 111, Palm Desert, CA 92260" in message.text
        assert "Delivery within 30-45 minutes" in message.text

    def test_optional_parts_are_omitted(self, order, items):
        message = format_status_notification(order, items, OrderStatus.DELIVERED)

        assert "*Contact:*" not in message.text
        assert "📝" not in message.text
        assert "⏰" not in message.text

    def test_phone_and_custom_message(self, order, items):
        order.phone_number = "+1 760 555 0100"

        message = format_status_notification(
            order, items, OrderStatus.RECEIVED, custom_message="  Gate code 4411  "
        )

        assert "*Contact:* +1 760 555 0100" in message.text
        assert "📝 Gate code 4411" in message.text

    def test_blank_custom_message_is_ignored(self, order, items):
        message = format_status_notification(order, items, OrderStatus.RECEIVED, custom_message="   ")

        assert "📝" not in message.text

    def test_accepts_status_value(self, order, items):
        message = format_status_notification(order, items, "cancelled")

        assert "Order Cancelled" in message.text

    def test_same_input_same_output(self, order, items):
        first = format_status_notification(order, items, OrderStatus.PLACED)
        second = format_status_notification(order, items, OrderStatus.PLACED)

        assert first == second
        assert first.to_dict()["recipient"] == "424242"


# ============================================================================
# Reminders
# ============================================================================


class TestDeliveryReminder:
    def test_approaching_with_minutes(self, order):
        message = format_delivery_reminder(order, "delivery_approaching", 15)

        assert "approximately 15 minutes" in message.text
        assert f"*Order ID:* `{ORDER_ID}`" in message.text

    def test_approaching_without_minutes(self, order):
        message = format_delivery_reminder(order)

        assert "approaching your delivery location" in message.text

    def test_delay(self, order):
        message = format_delivery_reminder(order, "delivery_delayed", 40)

        assert "Delivery Delay" in message.text
        assert "now arrive in approximately 40 minutes" in message.text

    def test_driver_contact_ignores_minutes(self, order):
        message = format_delivery_reminder(order, "driver_contact", 10)

        assert "driver has arrived" in message.text
        assert "10 minutes" not in message.text

    def test_unknown_type(self, order):
        with pytest.raises(ValueError, match="Unknown reminder type"):
            format_delivery_reminder(order, "teleport")

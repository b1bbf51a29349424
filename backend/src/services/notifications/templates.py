"""
Customer notification formatting with Jinja2.

Formatting is pure: given an order snapshot, its items and a status, it
returns the outbound message without performing any I/O. Delivery is the
dispatcher's job (see ``dispatcher.py``).
"""

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError

from src.core.logging import get_logger
from src.services.orders.enums import OrderStatus

logger = get_logger(__name__)

RENDER_MODE_MARKDOWN = "Markdown"


class TemplateRenderError(Exception):
    """Raised when a notification template fails to render."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


@dataclass(frozen=True)
class StatusTemplate:
    title: str
    body: str
    estimated_time: Optional[str] = None


STATUS_TEMPLATES: dict[OrderStatus, StatusTemplate] = {
    OrderStatus.PLACED: StatusTemplate(
        title="📦 Order Confirmed",
        body=(
            "Thank you for your order! We've received your request and will "
            "process it shortly."
        ),
        estimated_time="Processing begins within 1-2 hours",
    ),
    OrderStatus.RECEIVED: StatusTemplate(
        title="✅ Order Received",
        body=(
            "Your order has been received and verified by our team. We're "
            "preparing your items for delivery."
        ),
        estimated_time="Preparation will complete in 30-60 minutes",
    ),
    OrderStatus.IN_PROGRESS: StatusTemplate(
        title="🚀 Preparing Your Order",
        body=(
            "Great news! Your order is currently being prepared for delivery. "
            "We're ensuring everything is perfect for you."
        ),
        estimated_time="Ready for delivery in 15-30 minutes",
    ),
    OrderStatus.OUT_FOR_DELIVERY: StatusTemplate(
        title="🚗 Out for Delivery",
        body=(
            "Your order is now on its way! Our delivery team is heading to "
            "your location with your discreet package."
        ),
        estimated_time="Delivery within 30-45 minutes",
    ),
    OrderStatus.DELIVERED: StatusTemplate(
        title="🎉 Delivered Successfully",
        body=(
            "Your order has been delivered! Thank you for choosing our discreet "
            "delivery service. We hope you're satisfied with your purchase."
        ),
    ),
    OrderStatus.CANCELLED: StatusTemplate(
        title="❌ Order Cancelled",
        body=(
            "Your order has been cancelled. If you have any questions or would "
            "like to place a new order, please don't hesitate to contact us."
        ),
    ),
}

REMINDER_TEMPLATES = {
    "delivery_approaching": (
        "🚗 *Delivery Update*",
        "Your order will arrive in approximately {minutes} minutes. Please be "
        "available to receive your discreet package.",
        "Your order is approaching your delivery location. Please be available "
        "to receive your discreet package.",
    ),
    "delivery_delayed": (
        "⏰ *Delivery Delay*",
        "We're experiencing a slight delay. Your order will now arrive in "
        "approximately {minutes} minutes. Thank you for your patience!",
        "We're experiencing a slight delay with your delivery. We'll update you "
        "shortly with a new estimated time. Thank you for your patience!",
    ),
    "driver_contact": (
        "📞 *Driver Contact*",
        None,
        "Our delivery driver has arrived at your location. Please check for any "
        "messages or calls to coordinate the handoff of your discreet package.",
    ),
}

_TEMPLATES = {
    "status.md": (
        "*{{ title }}*\n"
        "\n"
        "{{ body }}\n"
        "{% if estimated_time %}\n⏰ *{{ estimated_time }}*\n{% endif %}"
        "{% if custom_message %}\n📝 {{ custom_message }}\n{% endif %}"
        "\n"
        "*Order Details:*\n"
        "Order ID: `{{ order_id }}`\n"
        "{% for item in items %}"
        "• {{ item.name }} (x{{ item.quantity }}) - {{ item.total | currency }}\n"
        "{% endfor %}"
        "\n"
        "*Total: {{ total | currency }}*\n"
        "*Delivery Address:* {{ address }}\n"
        "{% if phone %}*Contact:* {{ phone }}\n{% endif %}"
        "\n"
        "Thank you for choosing our discreet delivery service! 🌟"
    ),
    "reminder.md": (
        "{{ title }}\n"
        "\n"
        "{{ body }}\n"
        "\n"
        "*Order ID:* `{{ order_id }}`\n"
        "*Delivery Address:* {{ address }}\n"
        "{% if phone %}*Your Contact:* {{ phone }}\n{% endif %}"
        "\n"
        "Thanks for choosing our discreet delivery service! 🌟"
    ),
}


@dataclass(frozen=True)
class OutboundMessage:
    """Transport-neutral message ready for a dispatcher."""

    recipient: str
    text: str
    render_mode: str = RENDER_MODE_MARKDOWN
    disable_notification: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _format_currency(value: Any) -> str:
    return f"${Decimal(str(value)):,.2f}"


def _item_lines(items: Iterable[Any]) -> list[dict[str, Any]]:
    lines = []
    for item in items:
        name = getattr(item, "product_name", None) or f"Product #{item.product_id}"
        lines.append(
            {
                "name": name,
                "quantity": item.quantity,
                "total": item.total_price,
            }
        )
    return lines


class NotificationFormatter:
    """
    Renders status and reminder messages.

    Orders are read through attributes: ``id``, ``customer_id``,
    ``total_amount``, ``delivery_address`` and ``phone_number``. Items need
    ``product_name`` (or ``product_id``), ``quantity`` and ``total_price``.
    """

    def __init__(self):
        self.env = Environment(
            loader=DictLoader(_TEMPLATES),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )
        self.env.filters["currency"] = _format_currency

    def _render(self, template_name: str, **context: Any) -> str:
        try:
            return self.env.get_template(template_name).render(**context).strip()
        except TemplateError as e:
            logger.error(
                "Notification template rendering failed",
                template_name=template_name,
                error=str(e),
            )
            raise TemplateRenderError(
                f"Failed to render notification: {e}",
                template_name=template_name,
            ) from e

    def format_status(
        self,
        order: Any,
        items: Iterable[Any],
        status: OrderStatus,
        custom_message: Optional[str] = None,
    ) -> OutboundMessage:
        template = STATUS_TEMPLATES[OrderStatus(status)]
        text = self._render(
            "status.md",
            title=template.title,
            body=template.body,
            estimated_time=template.estimated_time,
            custom_message=(custom_message or "").strip() or None,
            order_id=str(order.id),
            items=_item_lines(items),
            total=order.total_amount,
            address=order.delivery_address,
            phone=order.phone_number,
        )
        return OutboundMessage(recipient=str(order.customer_id), text=text)

    def format_reminder(
        self,
        order: Any,
        reminder_type: str = "delivery_approaching",
        estimated_minutes: Optional[int] = None,
    ) -> OutboundMessage:
        """
        Raises:
            ValueError: For an unknown reminder type
        """
        if reminder_type not in REMINDER_TEMPLATES:
            raise ValueError(
                f"Unknown reminder type: {reminder_type}. "
                f"Valid values are: {', '.join(REMINDER_TEMPLATES)}"
            )

        title, timed_body, default_body = REMINDER_TEMPLATES[reminder_type]
        if estimated_minutes and timed_body:
            body = timed_body.format(minutes=estimated_minutes)
        else:
            body = default_body

        text = self._render(
            "reminder.md",
            title=title,
            body=body,
            order_id=str(order.id),
            address=order.delivery_address,
            phone=order.phone_number,
        )
        return OutboundMessage(recipient=str(order.customer_id), text=text)


_formatter = NotificationFormatter()


def format_status_notification(
    order: Any,
    items: Iterable[Any],
    status: OrderStatus,
    custom_message: Optional[str] = None,
) -> OutboundMessage:
    """
    Build the customer message for ``status``.

    Args:
        order: Order snapshot
        items: Order line items
        status: Status the order moved to
        custom_message: Optional note appended for the customer
    """
    return _formatter.format_status(order, items, status, custom_message)


def format_delivery_reminder(
    order: Any,
    reminder_type: str = "delivery_approaching",
    estimated_minutes: Optional[int] = None,
) -> OutboundMessage:
    return _formatter.format_reminder(order, reminder_type, estimated_minutes)

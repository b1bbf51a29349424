"""Order state machine implementation with transition validation.

Applies transitions from the table in ``enums.py``. Every successful
transition appends an attributed note and commits before the customer
notification is formatted and dispatched, so a failed dispatch is reported
next to the result instead of undoing the status change.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.order import Order, OrderNote
from src.services.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationServiceError,
    get_notification_dispatcher,
)
from src.services.notifications.templates import (
    OutboundMessage,
    TemplateRenderError,
    format_status_notification,
)
from src.services.orders.enums import (
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from src.services.orders.repository import (
    OrderNotFoundError,
    OrderRepository,
    OrderRepositoryError,
)

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        allowed_transitions: Optional[list[OrderStatus]] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.current_state = current_state
        self.target_state = target_state
        self.allowed_transitions = allowed_transitions or []
        self.context = context


@dataclass
class NotificationOutcome:
    sent: bool
    recipient: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TransitionResult:
    order: Order
    previous_status: OrderStatus
    new_status: OrderStatus
    note: OrderNote
    notification: NotificationOutcome

    @property
    def transition(self) -> str:
        return f"{self.previous_status.value} → {self.new_status.value}"


@dataclass
class BulkItemResult:
    order_id: uuid.UUID
    success: bool
    previous_status: Optional[OrderStatus] = None
    new_status: Optional[OrderStatus] = None
    error: Optional[str] = None
    notification: Optional[NotificationOutcome] = None


@dataclass
class BulkUpdateResult:
    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failure_count(self) -> int:
        return self.total - self.success_count


StatusFormatter = Callable[[Any, Iterable[Any], OrderStatus, Optional[str]], OutboundMessage]


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    Each transition runs in its own transaction on ``session``: the order
    row is locked, the transition checked, the status and note written, and
    the transaction committed. Notification happens afterwards.
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        formatter: StatusFormatter = format_status_notification,
    ):
        """Initialize state machine.

        Args:
            session: Async database session
            dispatcher: Outbound channel; defaults to the configured one
            formatter: Pure function building the customer message
        """
        self.session = session
        self.repository = OrderRepository(session)
        self.dispatcher = dispatcher or get_notification_dispatcher()
        self.formatter = formatter

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Check ``order.status -> target_status`` against the transition table.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        current_status = order.status
        if validate_order_status_transition(current_status, target_status):
            return

        allowed = get_allowed_order_transitions(current_status)
        valid = ", ".join(s.value for s in allowed) if allowed else "none"
        raise StateTransitionError(
            f"Invalid status transition from '{current_status.value}' to "
            f"'{target_status.value}'. Valid transitions: {valid}",
            current_state=current_status,
            target_state=target_status,
            allowed_transitions=allowed,
            order_id=str(order.id),
        )

    def get_allowed_transitions(self, order: Order) -> list[OrderStatus]:
        return get_allowed_order_transitions(order.status)

    async def update_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
        custom_message: Optional[str] = None,
    ) -> TransitionResult:
        """Move an order to ``new_status`` and notify the customer.

        Args:
            order_id: Order to update
            new_status: Target status
            notes: Optional admin note stored with the transition
            actor: Who made the change, recorded as the note author
            custom_message: Optional text appended to the customer message

        Returns:
            TransitionResult with the notification outcome

        Raises:
            OrderNotFoundError: If the order does not exist
            StateTransitionError: If the transition is not allowed
            OrderRepositoryError: If the change could not be stored
        """
        new_status = OrderStatus(new_status)
        author = actor or SYSTEM_ACTOR

        order = await self.repository.get_order_by_id(order_id, for_update=True)
        if order is None:
            await self.session.rollback()
            raise OrderNotFoundError(order_id)

        try:
            self.validate_transition(order, new_status)
        except StateTransitionError as e:
            # rollback expires the order; log from the exception only
            await self.session.rollback()
            logger.info(
                "Status transition rejected",
                order_id=str(order_id),
                current_status=e.current_state.value,
                target_status=e.target_state.value,
            )
            raise

        previous_status = order.status
        body = f"Status changed from '{previous_status.value}' to '{new_status.value}'"
        if notes and notes.strip():
            body += f"\nAdmin notes: {notes.strip()}"

        try:
            order.status = new_status
            note = await self.repository.add_note(
                order,
                author=author,
                body=body,
                from_status=previous_status,
                to_status=new_status,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to store status transition",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to update order status",
                order_id=str(order_id),
                error=str(e),
            ) from e

        logger.info(
            "Order status updated",
            order_id=str(order_id),
            previous_status=previous_status.value,
            new_status=new_status.value,
            actor=author,
        )

        notification = await self._notify(order, new_status, custom_message)
        return TransitionResult(
            order=order,
            previous_status=previous_status,
            new_status=new_status,
            note=note,
            notification=notification,
        )

    async def _notify(
        self,
        order: Order,
        status: OrderStatus,
        custom_message: Optional[str],
    ) -> NotificationOutcome:
        recipient = str(order.customer_id)
        try:
            message = self.formatter(order, order.items, status, custom_message)
            await self.dispatcher.dispatch(message)
        except (NotificationServiceError, TemplateRenderError) as e:
            logger.warning(
                "Customer notification failed; status change kept",
                order_id=str(order.id),
                status=status.value,
                error=str(e),
            )
            return NotificationOutcome(sent=False, recipient=recipient, error=str(e))

        return NotificationOutcome(sent=True, recipient=message.recipient)

    async def bulk_update_status(
        self,
        order_ids: Iterable[uuid.UUID],
        new_status: OrderStatus,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> BulkUpdateResult:
        """Apply one transition to many orders.

        Each id is processed in its own transaction; a failure is recorded
        and processing continues with the next id.
        """
        new_status = OrderStatus(new_status)
        outcome = BulkUpdateResult()

        for order_id in order_ids:
            try:
                result = await self.update_status(order_id, new_status, notes=notes, actor=actor)
            except StateTransitionError as e:
                outcome.results.append(
                    BulkItemResult(
                        order_id=order_id,
                        success=False,
                        previous_status=e.current_state,
                        error=e.message,
                    )
                )
                continue
            except OrderRepositoryError as e:
                outcome.results.append(
                    BulkItemResult(order_id=order_id, success=False, error=e.message)
                )
                continue

            outcome.results.append(
                BulkItemResult(
                    order_id=order_id,
                    success=True,
                    previous_status=result.previous_status,
                    new_status=result.new_status,
                    notification=result.notification,
                )
            )

        logger.info(
            "Bulk status update completed",
            target_status=new_status.value,
            total=outcome.total,
            success_count=outcome.success_count,
            failure_count=outcome.failure_count,
        )
        return outcome

    async def add_note(
        self,
        order_id: uuid.UUID,
        body: str,
        actor: Optional[str] = None,
    ) -> OrderNote:
        """Append an annotation to the order log without changing status.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.repository.get_order_by_id(order_id, for_update=True)
        if order is None:
            await self.session.rollback()
            raise OrderNotFoundError(order_id)

        note = await self.repository.add_note(order, author=actor or SYSTEM_ACTOR, body=body.strip())
        await self.session.commit()
        return note

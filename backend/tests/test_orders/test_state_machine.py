"""
Tests for the order status state machine.

Covers the transition table, rejected transitions leaving orders untouched,
the attributed note log, notification isolation and bulk updates.
"""

import uuid

import pytest

from src.services.notifications.templates import TemplateRenderError
from src.services.orders.enums import (
    ORDER_STATUS_TRANSITIONS,
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from src.services.orders.repository import OrderNotFoundError
from src.services.orders.state_machine import OrderStateMachine, StateTransitionError

HAPPY_PATH = [
    OrderStatus.RECEIVED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]


@pytest.fixture
def state_machine(session, dispatcher) -> OrderStateMachine:
    """
    State machine over the test session with a recording dispatcher.
    """
    return OrderStateMachine(session, dispatcher=dispatcher)


# ============================================================================
# Transition table
# ============================================================================


class TestTransitionTable:
    """The lifecycle graph itself."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PLACED, OrderStatus.RECEIVED),
            (OrderStatus.RECEIVED, OrderStatus.IN_PROGRESS),
            (OrderStatus.IN_PROGRESS, OrderStatus.OUT_FOR_DELIVERY),
            (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED),
            (OrderStatus.PLACED, OrderStatus.CANCELLED),
            (OrderStatus.RECEIVED, OrderStatus.CANCELLED),
            (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED),
            (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert validate_order_status_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PLACED, OrderStatus.IN_PROGRESS),
            (OrderStatus.PLACED, OrderStatus.DELIVERED),
            (OrderStatus.RECEIVED, OrderStatus.PLACED),
            (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.IN_PROGRESS),
            (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
            (OrderStatus.CANCELLED, OrderStatus.PLACED),
            (OrderStatus.PLACED, OrderStatus.PLACED),
        ],
    )
    def test_rejected(self, current, target):
        assert not validate_order_status_transition(current, target)

    def test_terminal_statuses(self):
        terminal = {status for status in OrderStatus if status.is_terminal}

        assert terminal == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def test_every_status_has_an_entry(self):
        assert set(ORDER_STATUS_TRANSITIONS) == set(OrderStatus)

    def test_allowed_transitions_in_stable_order(self):
        assert get_allowed_order_transitions(OrderStatus.PLACED) == [
            OrderStatus.RECEIVED,
            OrderStatus.CANCELLED,
        ]
        assert get_allowed_order_transitions(OrderStatus.DELIVERED) == []

    @pytest.mark.parametrize("value", ["Received", " in_progress ", "OUT_FOR_DELIVERY"])
    def test_from_string(self, value):
        assert OrderStatus.from_string(value) in OrderStatus

    def test_from_string_rejects_unknown(self):
        with pytest.raises(ValueError, match="Valid values are"):
            OrderStatus.from_string("shipped")


# ============================================================================
# Single transitions
# ============================================================================


class TestUpdateStatus:
    """Applying one transition."""

    async def test_transition_records_note_and_notifies(
        self, state_machine, place_order, dispatcher, load_order
    ):
        order = await place_order(quantity=2)

        result = await state_machine.update_status(
            order.id,
            OrderStatus.RECEIVED,
            notes="Verified by phone",
            actor="Admin alice",
        )

        assert result.previous_status is OrderStatus.PLACED
        assert result.new_status is OrderStatus.RECEIVED
        assert result.transition == "placed → received"
        assert result.note.author == "Admin alice"
        assert result.note.body == (
            "Status changed from 'placed' to 'received'\nAdmin notes: Verified by phone"
        )
        assert result.note.created_at is not None
        assert result.notification.sent is True
        assert result.notification.recipient == "1001"

        assert len(dispatcher.messages) == 1
        message = dispatcher.messages[0]
        assert message.recipient == "1001"
        assert "Order Received" in message.text
        assert "Gadget (x2) - $9.00" in message.text

        stored = await load_order(order.id)
        assert stored.status is OrderStatus.RECEIVED
        assert [note.to_status for note in stored.notes] == ["received"]
        assert stored.notes[0].from_status == "placed"

    async def test_default_actor_is_system(self, state_machine, place_order):
        order = await place_order()

        result = await state_machine.update_status(order.id, OrderStatus.CANCELLED)

        assert result.note.author == "system"
        assert result.note.body == "Status changed from 'placed' to 'cancelled'"

    async def test_custom_message_reaches_customer(self, state_machine, place_order, dispatcher):
        order = await place_order()

        await state_machine.update_status(
            order.id,
            OrderStatus.RECEIVED,
            custom_message="Driver will call on arrival",
        )

        assert "Driver will call on arrival" in dispatcher.messages[0].text

    async def test_full_lifecycle(self, state_machine, place_order, load_order):
        order = await place_order()

        for status in HAPPY_PATH:
            await state_machine.update_status(order.id, status, actor="Admin alice")

        stored = await load_order(order.id)
        assert stored.status is OrderStatus.DELIVERED
        assert stored.is_terminal
        assert [note.to_status for note in stored.notes] == [s.value for s in HAPPY_PATH]
        assert state_machine.get_allowed_transitions(stored) == []

    async def test_accepts_status_string(self, state_machine, place_order):
        order = await place_order()

        result = await state_machine.update_status(order.id, "received")

        assert result.new_status is OrderStatus.RECEIVED

    async def test_unknown_order(self, state_machine, dispatcher):
        with pytest.raises(OrderNotFoundError):
            await state_machine.update_status(uuid.uuid4(), OrderStatus.RECEIVED)

        assert dispatcher.messages == []


class TestInvalidTransitions:
    """A rejected transition names the alternatives and changes nothing."""

    async def test_skipping_ahead_is_rejected(
        self, state_machine, place_order, dispatcher, load_order
    ):
        order = await place_order()

        with pytest.raises(StateTransitionError) as exc_info:
            await state_machine.update_status(order.id, OrderStatus.DELIVERED, notes="skip")

        error = exc_info.value
        assert error.message == (
            "Invalid status transition from 'placed' to 'delivered'. "
            "Valid transitions: received, cancelled"
        )
        assert error.current_state is OrderStatus.PLACED
        assert error.allowed_transitions == [OrderStatus.RECEIVED, OrderStatus.CANCELLED]

        stored = await load_order(order.id)
        assert stored.status is OrderStatus.PLACED
        assert stored.notes == []
        assert dispatcher.messages == []

    async def test_terminal_order_has_no_valid_transitions(
        self, state_machine, place_order, load_order
    ):
        order = await place_order()
        await state_machine.update_status(order.id, OrderStatus.CANCELLED)

        with pytest.raises(StateTransitionError, match="Valid transitions: none"):
            await state_machine.update_status(order.id, OrderStatus.RECEIVED)

        stored = await load_order(order.id)
        assert stored.status is OrderStatus.CANCELLED
        assert len(stored.notes) == 1

    async def test_session_usable_after_rejection(self, state_machine, place_order):
        order = await place_order()
        with pytest.raises(StateTransitionError):
            await state_machine.update_status(order.id, OrderStatus.OUT_FOR_DELIVERY)

        result = await state_machine.update_status(order.id, OrderStatus.RECEIVED)

        assert result.new_status is OrderStatus.RECEIVED


# ============================================================================
# Notification isolation
# ============================================================================


class TestNotificationFailure:
    """A failed dispatch is reported but the status change stands."""

    async def test_dispatch_failure_keeps_status_change(
        self, session, failing_dispatcher, place_order, load_order
    ):
        machine = OrderStateMachine(session, dispatcher=failing_dispatcher)
        order = await place_order()

        result = await machine.update_status(order.id, OrderStatus.RECEIVED)

        assert failing_dispatcher.attempts == 1
        assert result.new_status is OrderStatus.RECEIVED
        assert result.notification.sent is False
        assert "502" in result.notification.error

        stored = await load_order(order.id)
        assert stored.status is OrderStatus.RECEIVED
        assert len(stored.notes) == 1

    async def test_formatter_failure_keeps_status_change(
        self, session, dispatcher, place_order, load_order
    ):
        def broken_formatter(order, items, status, custom_message):
            raise TemplateRenderError("template exploded", template_name="status.md")

        machine = OrderStateMachine(session, dispatcher=dispatcher, formatter=broken_formatter)
        order = await place_order()

        result = await machine.update_status(order.id, OrderStatus.RECEIVED)

        assert result.notification.sent is False
        assert dispatcher.messages == []
        assert (await load_order(order.id)).status is OrderStatus.RECEIVED


# ============================================================================
# Bulk updates
# ============================================================================


class TestBulkUpdate:
    """Per-id results with success and failure counts."""

    async def test_one_invalid_of_three(self, state_machine, place_order, load_order):
        """
        Two placed orders and one already cancelled: two succeed, one fails
        with a transition error, and the cancelled one is untouched.
        """
        first = await place_order()
        second = await place_order()
        cancelled = await place_order()
        await state_machine.update_status(cancelled.id, OrderStatus.CANCELLED)

        outcome = await state_machine.bulk_update_status(
            [first.id, cancelled.id, second.id],
            OrderStatus.RECEIVED,
            actor="Admin alice",
        )

        assert outcome.total == 3
        assert outcome.success_count == 2
        assert outcome.failure_count == 1
        assert [r.order_id for r in outcome.results] == [first.id, cancelled.id, second.id]
        assert [r.success for r in outcome.results] == [True, False, True]

        failed = outcome.results[1]
        assert failed.previous_status is OrderStatus.CANCELLED
        assert "Valid transitions: none" in failed.error
        assert (await load_order(cancelled.id)).status is OrderStatus.CANCELLED
        assert (await load_order(first.id)).status is OrderStatus.RECEIVED
        assert (await load_order(second.id)).status is OrderStatus.RECEIVED

    async def test_processing_continues_after_mid_batch_rejections(
        self, state_machine, place_order, load_order
    ):
        """
        Rejections in the middle of a batch roll back only their own
        transaction; every later id is still applied.
        """
        head = await place_order()
        received = await place_order()
        cancelled = await place_order()
        tail = await place_order()
        await state_machine.update_status(received.id, OrderStatus.RECEIVED)
        await state_machine.update_status(cancelled.id, OrderStatus.CANCELLED)

        outcome = await state_machine.bulk_update_status(
            [head.id, received.id, cancelled.id, tail.id], OrderStatus.RECEIVED
        )

        assert [r.success for r in outcome.results] == [True, False, False, True]
        assert outcome.results[1].previous_status is OrderStatus.RECEIVED
        assert outcome.results[2].previous_status is OrderStatus.CANCELLED
        assert outcome.results[3].new_status is OrderStatus.RECEIVED

        stored_tail = await load_order(tail.id)
        assert stored_tail.status is OrderStatus.RECEIVED
        assert len(stored_tail.notes) == 1
        assert len((await load_order(received.id)).notes) == 1

        follow_up = await state_machine.update_status(received.id, OrderStatus.IN_PROGRESS)
        assert follow_up.previous_status is OrderStatus.RECEIVED

    async def test_unknown_id_is_reported_not_raised(self, state_machine, place_order):
        order = await place_order()
        missing = uuid.uuid4()

        outcome = await state_machine.bulk_update_status([missing, order.id], OrderStatus.RECEIVED)

        assert outcome.success_count == 1
        assert outcome.failure_count == 1
        assert outcome.results[0].order_id == missing
        assert "not found" in outcome.results[0].error

    async def test_notification_outcome_per_order(
        self, session, failing_dispatcher, place_order
    ):
        machine = OrderStateMachine(session, dispatcher=failing_dispatcher)
        order = await place_order()

        outcome = await machine.bulk_update_status([order.id], OrderStatus.RECEIVED)

        assert outcome.success_count == 1
        assert outcome.results[0].notification.sent is False


# ============================================================================
# Notes
# ============================================================================


class TestAddNote:
    async def test_note_without_status_change(self, state_machine, place_order, load_order):
        order = await place_order()

        note = await state_machine.add_note(order.id, "  Customer asked for a call  ", actor="Admin bob")

        assert note.author == "Admin bob"
        assert note.body == "Customer asked for a call"
        assert not note.is_status_change
        stored = await load_order(order.id)
        assert stored.status is OrderStatus.PLACED
        assert "Admin bob: Customer asked for a call" in stored.notes[0].render()

    async def test_note_on_unknown_order(self, state_machine):
        with pytest.raises(OrderNotFoundError):
            await state_machine.add_note(uuid.uuid4(), "hello")

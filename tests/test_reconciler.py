"""
Tests for PaymentReconciler

The reconciler is the only writer that settles payments, so these cover:
1. Repeated and concurrent success notifications settle exactly once
2. A seat is committed at most once, and never past zero
3. Failure and cancellation close the ticket without touching inventory
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from bus_booking_platform.models.payment import FailureReason, PaymentStatus
from bus_booking_platform.models.ticket import TicketStatus
from bus_booking_platform.services.payment_gateway import NormalizedStatus
from bus_booking_platform.services.reconciler import OutcomeKind, PaymentReconciler, ReconciliationSource
from bus_booking_platform.services.seat_inventory import SeatInventory
from bus_booking_platform.utils.exceptions import PaymentNotFoundError
from tests.conftest import (
    count_completed_tickets,
    create_bus,
    create_pending_payment,
    create_ticket,
    load_bus,
    load_payment,
    load_ticket,
)


@pytest.mark.unit
class TestPaymentReconcilerSuccess:

    async def test_paid__completes_payment_ticket_and_commits_seat(self, session_factory, reconciler, dispatcher, bus, ticket):
        # Arrange
        payment = await create_pending_payment(session_factory, ticket, 'REF-PAID-1')

        # Act
        outcome = await reconciler.apply_status('REF-PAID-1', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)

        # Assert
        assert outcome.kind == OutcomeKind.COMPLETED
        assert outcome.applied is True

        stored_payment = await load_payment(session_factory, 'REF-PAID-1')
        assert stored_payment.status == PaymentStatus.COMPLETED
        assert stored_payment.completed_at is not None

        stored_ticket = await load_ticket(session_factory, ticket.id)
        assert stored_ticket.status == TicketStatus.COMPLETED
        assert stored_ticket.payment_method == 'ecocash'
        assert stored_ticket.gateway_reference == 'REF-PAID-1'

        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats - 1
        assert dispatcher.confirmations == [(payment.id, ticket.id)]

    async def test_paid_twice__second_delivery_is_a_no_op(self, session_factory, reconciler, dispatcher, bus, ticket):
        await create_pending_payment(session_factory, ticket, 'REF-TWICE')

        first = await reconciler.apply_status('REF-TWICE', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)
        second = await reconciler.apply_status('REF-TWICE', NormalizedStatus.PAID, ReconciliationSource.POLL)

        assert first.applied is True
        assert second.applied is False
        assert second.kind == OutcomeKind.COMPLETED
        assert second.bus_id == first.bus_id == bus.id
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats - 1
        assert len(dispatcher.confirmations) == 1

    async def test_webhook_and_poll_race__converge_on_one_settlement(self, session_factory, reconciler, dispatcher, bus, ticket):
        await create_pending_payment(session_factory, ticket, 'REF-RACE')

        outcomes = await asyncio.gather(
            reconciler.apply_status('REF-RACE', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK),
            reconciler.apply_status('REF-RACE', NormalizedStatus.PAID, ReconciliationSource.POLL),
        )

        assert sorted(outcome.applied for outcome in outcomes) == [False, True]
        assert all(outcome.kind == OutcomeKind.COMPLETED for outcome in outcomes)
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats - 1
        assert len(dispatcher.confirmations) == 1

    async def test_non_terminal_status__leaves_payment_pending(self, session_factory, reconciler, dispatcher, bus, ticket):
        await create_pending_payment(session_factory, ticket, 'REF-SENT')

        outcome = await reconciler.apply_status('REF-SENT', NormalizedStatus.SENT, ReconciliationSource.POLL)

        assert outcome.kind == OutcomeKind.STILL_PENDING
        assert outcome.applied is False
        assert (await load_payment(session_factory, 'REF-SENT')).status == PaymentStatus.PENDING
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats
        assert dispatcher.confirmations == []

    async def test_unknown_reference__raises_not_found(self, reconciler):
        with pytest.raises(PaymentNotFoundError):
            await reconciler.apply_status('NO-SUCH-REF', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)


@pytest.mark.unit
class TestPaymentReconcilerSeatConflicts:

    async def test_second_payer_for_same_seat__fails_with_seat_lost(
        self, session_factory, reconciler, dispatcher, bus, user, other_user
    ):
        # Arrange - two passengers booked the same seat; neither was reserved
        first_ticket = await create_ticket(session_factory, bus, user, seat_number=7)
        second_ticket = await create_ticket(session_factory, bus, other_user, seat_number=7)
        await create_pending_payment(session_factory, first_ticket, 'REF-SEAT-A')
        await create_pending_payment(session_factory, second_ticket, 'REF-SEAT-B')

        # Act
        winner = await reconciler.apply_status('REF-SEAT-A', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)
        loser = await reconciler.apply_status('REF-SEAT-B', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)

        # Assert
        assert winner.kind == OutcomeKind.COMPLETED
        assert loser.kind == OutcomeKind.FAILED
        assert loser.reason == FailureReason.SEAT_LOST

        assert (await load_ticket(session_factory, second_ticket.id)).status == TicketStatus.FAILED
        stored = await load_payment(session_factory, 'REF-SEAT-B')
        assert stored.status == PaymentStatus.FAILED
        assert stored.failure_reason == FailureReason.SEAT_LOST

        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats - 1
        assert len(dispatcher.confirmations) == 1

    async def test_concurrent_payers_for_same_seat__exactly_one_wins(
        self, session_factory, reconciler, dispatcher, bus, user, other_user
    ):
        first_ticket = await create_ticket(session_factory, bus, user, seat_number=3)
        second_ticket = await create_ticket(session_factory, bus, other_user, seat_number=3)
        await create_pending_payment(session_factory, first_ticket, 'REF-CONC-A')
        await create_pending_payment(session_factory, second_ticket, 'REF-CONC-B')

        outcomes = await asyncio.gather(
            reconciler.apply_status('REF-CONC-A', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK),
            reconciler.apply_status('REF-CONC-B', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK),
        )

        kinds = sorted(outcome.kind.value for outcome in outcomes)
        assert kinds == [OutcomeKind.COMPLETED.value, OutcomeKind.FAILED.value]
        assert [o.reason for o in outcomes if o.kind == OutcomeKind.FAILED] == [FailureReason.SEAT_LOST]
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats - 1
        assert len(dispatcher.confirmations) == 1

        # Counter and sold tickets agree
        completed = await count_completed_tickets(session_factory, bus.id)
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats - completed

    async def test_stale_seat_check__unique_index_fails_payment_with_seat_lost(
        self, session_factory, reconciler, dispatcher, bus, user, other_user, monkeypatch
    ):
        # Arrange - the seat was sold by a transaction the check did not see
        await create_ticket(session_factory, bus, other_user, seat_number=5, status=TicketStatus.COMPLETED)
        late_ticket = await create_ticket(session_factory, bus, user, seat_number=5)
        await create_pending_payment(session_factory, late_ticket, 'REF-STALE-CHECK')

        async def stale_check(self, bus_id, seat_number, exclude_ticket_id=None):
            return True

        monkeypatch.setattr(SeatInventory, 'check_seat_free', stale_check)

        # Act
        outcome = await reconciler.apply_status('REF-STALE-CHECK', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)

        # Assert
        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.reason == FailureReason.SEAT_LOST
        assert outcome.applied is True
        assert outcome.bus_id == bus.id

        stored = await load_payment(session_factory, 'REF-STALE-CHECK')
        assert stored.status == PaymentStatus.FAILED
        assert stored.failure_reason == FailureReason.SEAT_LOST
        assert (await load_ticket(session_factory, late_ticket.id)).status == TicketStatus.FAILED
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats
        assert dispatcher.confirmations == []

    async def test_full_bus__fails_with_seat_exhausted(self, session_factory, reconciler, dispatcher, user):
        full_bus = await create_bus(session_factory, total_seats=28, available_seats=0)
        ticket = await create_ticket(session_factory, full_bus, user, seat_number=1)
        await create_pending_payment(session_factory, ticket, 'REF-FULL')

        outcome = await reconciler.apply_status('REF-FULL', NormalizedStatus.PAID, ReconciliationSource.POLL)

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.reason == FailureReason.SEAT_EXHAUSTED
        assert (await load_ticket(session_factory, ticket.id)).status == TicketStatus.FAILED
        assert (await load_bus(session_factory, full_bus.id)).available_seats == 0
        assert dispatcher.confirmations == []

    async def test_completed_seat_index__rejects_second_completed_ticket(self, session_factory, bus, user, other_user):
        await create_ticket(session_factory, bus, user, seat_number=9, status=TicketStatus.COMPLETED)

        with pytest.raises(IntegrityError):
            await create_ticket(session_factory, bus, other_user, seat_number=9, status=TicketStatus.COMPLETED)


@pytest.mark.unit
class TestPaymentReconcilerClosing:

    @pytest.mark.parametrize(
        'status, payment_status, ticket_status, reason',
        [
            (NormalizedStatus.CANCELLED, PaymentStatus.CANCELLED, TicketStatus.CANCELLED, None),
            (NormalizedStatus.FAILED, PaymentStatus.FAILED, TicketStatus.FAILED, FailureReason.GATEWAY_FAILED),
        ],
    )
    async def test_unsuccessful_status__closes_without_inventory_change(
        self, session_factory, reconciler, dispatcher, bus, ticket, status, payment_status, ticket_status, reason
    ):
        await create_pending_payment(session_factory, ticket, 'REF-CLOSE')

        outcome = await reconciler.apply_status('REF-CLOSE', status, ReconciliationSource.POLL)

        assert outcome.applied is True
        assert outcome.bus_id == bus.id
        assert outcome.reason == reason
        stored = await load_payment(session_factory, 'REF-CLOSE')
        assert stored.status == payment_status
        assert stored.failure_reason == reason
        assert (await load_ticket(session_factory, ticket.id)).status == ticket_status
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats
        assert dispatcher.confirmations == []

    async def test_paid_after_cancel__terminal_status_is_permanent(self, session_factory, reconciler, dispatcher, bus, ticket):
        await create_pending_payment(session_factory, ticket, 'REF-LATE')
        await reconciler.apply_status('REF-LATE', NormalizedStatus.CANCELLED, ReconciliationSource.POLL)

        late = await reconciler.apply_status('REF-LATE', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)

        assert late.kind == OutcomeKind.CANCELLED
        assert late.applied is False
        assert late.bus_id == bus.id
        assert (await load_payment(session_factory, 'REF-LATE')).status == PaymentStatus.CANCELLED
        assert (await load_bus(session_factory, bus.id)).available_seats == bus.total_seats
        assert dispatcher.confirmations == []

    async def test_dispatch_failure__does_not_undo_completion(self, session_factory, bus, ticket):
        class BrokenDispatcher:
            def dispatch_payment_confirmation(self, payment_id, ticket_id):
                raise ConnectionError('broker down')

            def schedule_polling(self, reference):
                pass

        await create_pending_payment(session_factory, ticket, 'REF-BROKER')
        reconciler = PaymentReconciler(session_factory, BrokenDispatcher())

        outcome = await reconciler.apply_status('REF-BROKER', NormalizedStatus.PAID, ReconciliationSource.WEBHOOK)

        assert outcome.kind == OutcomeKind.COMPLETED
        assert (await load_payment(session_factory, 'REF-BROKER')).status == PaymentStatus.COMPLETED

"""
Tests for PaymentService

Covers the initiation guards (ownership, already paid, one pending payment
per ticket, seat availability), the gateway hand-off, and the status view
a polling client sees.
"""

import asyncio
from decimal import Decimal

import pytest

from bus_booking_platform.cache import RedisCache
from bus_booking_platform.models.payment import PaymentStatus
from bus_booking_platform.models.ticket import TicketStatus
from bus_booking_platform.services.payment_gateway import NormalizedStatus
from bus_booking_platform.services.payment_service import PaymentService
from bus_booking_platform.services.polling_supervisor import PollingResult
from bus_booking_platform.utils.exceptions import (
    AlreadyPaidError,
    GatewayRejectedError,
    PaymentInProgressError,
    PaymentNotFoundError,
    SeatExhaustedError,
    SeatTakenError,
    TicketNotFoundError,
    ValidationError,
)
from tests.conftest import (
    TEST_PHONE,
    FakeGateway,
    count_payments,
    create_bus,
    create_ticket,
    load_payment,
    load_ticket,
)


@pytest.fixture
def payment_service(session_factory, gateway, dispatcher, supervisor):
    return PaymentService(session_factory, gateway, dispatcher, supervisor, cache=RedisCache())


@pytest.mark.unit
class TestInitiatePayment:

    async def test_initiate__records_pending_payment_and_schedules_polling(
        self, session_factory, payment_service, gateway, dispatcher, user, ticket
    ):
        # Act
        initiation = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE, 'EcoCash')

        # Assert - gateway was asked with the ticket's amount and route
        handle = gateway.created[0]
        assert handle.reference == initiation.reference
        assert handle.amount == Decimal('35.00')
        assert handle.auth_email == user.email
        assert handle.description == 'Bus Ticket: Harare to Bulawayo'
        assert gateway.prompts[0]['method'] == 'ecocash'

        # Assert - payment row and ticket link
        payment = await load_payment(session_factory, initiation.reference)
        assert payment.status == PaymentStatus.PENDING
        assert payment.phone_number == '+263771234567'
        assert payment.poll_handle == initiation.poll_url
        assert payment.gateway_reference == 'PN-1001'

        stored_ticket = await load_ticket(session_factory, ticket.id)
        assert stored_ticket.status == TicketStatus.PENDING
        assert stored_ticket.gateway_reference == initiation.reference

        assert dispatcher.polling == [initiation.reference]
        assert initiation.reference.startswith('TKT')

    async def test_initiate_for_completed_ticket__raises_already_paid_without_new_payment(
        self, session_factory, payment_service, gateway, user, bus
    ):
        paid_ticket = await create_ticket(session_factory, bus, user, seat_number=4, status=TicketStatus.COMPLETED)

        with pytest.raises(AlreadyPaidError):
            await payment_service.initiate_payment(user.id, paid_ticket.id, TEST_PHONE)

        assert await count_payments(session_factory, paid_ticket.id) == 0
        assert gateway.prompts == []

    async def test_initiate_while_pending__raises_in_progress_with_existing_reference(
        self, session_factory, payment_service, user, ticket
    ):
        first = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)

        with pytest.raises(PaymentInProgressError) as exc_info:
            await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)

        assert exc_info.value.details['reference'] == first.reference
        assert await count_payments(session_factory, ticket.id) == 1

    async def test_concurrent_initiations__prompt_the_payer_once(
        self, session_factory, payment_service, gateway, user, ticket
    ):
        # Act
        results = await asyncio.gather(
            payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE),
            payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE),
            return_exceptions=True,
        )

        # Assert - the losing request is refused before reaching the gateway
        started = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, PaymentInProgressError)]
        assert len(started) == 1
        assert len(refused) == 1
        assert refused[0].details['reference'] == started[0].reference
        assert [prompt['reference'] for prompt in gateway.prompts] == [started[0].reference]
        assert await count_payments(session_factory, ticket.id) == 1

    async def test_payment_claim__exists_while_payer_is_prompted(
        self, session_factory, dispatcher, supervisor, user, ticket
    ):
        seen = {}

        class InspectingGateway(FakeGateway):
            async def send_mobile_prompt(self, handle, phone_number, method):
                stored = await load_payment(session_factory, handle.reference)
                seen['status'], seen['poll_handle'] = stored.status, stored.poll_handle
                return await super().send_mobile_prompt(handle, phone_number, method)

        service = PaymentService(session_factory, InspectingGateway(), dispatcher, supervisor, cache=RedisCache())

        initiation = await service.initiate_payment(user.id, ticket.id, TEST_PHONE)

        assert seen == {'status': PaymentStatus.PENDING, 'poll_handle': None}
        assert (await load_payment(session_factory, initiation.reference)).poll_handle == initiation.poll_url

    async def test_initiate_after_cancellation__starts_a_new_attempt(
        self, session_factory, payment_service, gateway, user, ticket
    ):
        # Arrange - first attempt is cancelled on the fifth poll
        first = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)
        gateway.script(*([NormalizedStatus.SENT] * 4), NormalizedStatus.CANCELLED)
        report = await payment_service.await_payment(first.reference)
        assert report.result == PollingResult.CANCELLED
        assert report.attempts == 5
        assert (await load_ticket(session_factory, ticket.id)).status == TicketStatus.CANCELLED

        # Act
        second = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)

        # Assert
        assert second.reference != first.reference
        assert (await load_ticket(session_factory, ticket.id)).status == TicketStatus.PENDING
        assert (await load_payment(session_factory, first.reference)).status == PaymentStatus.CANCELLED
        assert await count_payments(session_factory, ticket.id) == 2

    async def test_initiate_for_sold_seat__raises_seat_taken(
        self, session_factory, payment_service, user, other_user, bus, ticket
    ):
        await create_ticket(session_factory, bus, other_user, seat_number=ticket.seat_number, status=TicketStatus.COMPLETED)

        with pytest.raises(SeatTakenError):
            await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)

    async def test_initiate_on_full_bus__raises_seat_exhausted(self, session_factory, payment_service, user):
        full_bus = await create_bus(session_factory, total_seats=35, available_seats=0, price='25.00', route='Harare to Mutare')
        ticket = await create_ticket(session_factory, full_bus, user, seat_number=2)

        with pytest.raises(SeatExhaustedError):
            await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)

    async def test_initiate_for_someone_elses_ticket__raises_not_found(self, payment_service, other_user, ticket):
        with pytest.raises(TicketNotFoundError):
            await payment_service.initiate_payment(other_user.id, ticket.id, TEST_PHONE)

    @pytest.mark.parametrize('phone, method', [('12345', 'ecocash'), ('0771234567', 'visa')])
    async def test_initiate_with_bad_input__raises_validation_error_before_gateway(
        self, payment_service, gateway, user, ticket, phone, method
    ):
        with pytest.raises(ValidationError):
            await payment_service.initiate_payment(user.id, ticket.id, phone, method)

        assert gateway.created == []

    async def test_gateway_rejection__leaves_no_payment_behind(
        self, session_factory, dispatcher, supervisor, user, ticket
    ):
        rejecting = FakeGateway(reject_with=GatewayRejectedError('Insufficient balance'))
        service = PaymentService(session_factory, rejecting, dispatcher, supervisor, cache=RedisCache())

        with pytest.raises(GatewayRejectedError):
            await service.initiate_payment(user.id, ticket.id, TEST_PHONE)

        assert await count_payments(session_factory, ticket.id) == 0
        assert (await load_ticket(session_factory, ticket.id)).status == TicketStatus.PENDING
        assert dispatcher.polling == []


@pytest.mark.unit
class TestPaymentStatus:

    async def test_status_while_sent__reports_waiting_for_authorization(self, payment_service, gateway, user, ticket):
        initiation = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)
        gateway.script(NormalizedStatus.SENT)

        view = await payment_service.get_payment_status(initiation.reference)

        assert view['status'] == 'pending'
        assert view['success'] is False
        assert view['message'] == 'Payment request sent - waiting for authorization'
        assert view['gateway_status'] == 'sent'

    async def test_status_when_gateway_unreachable__asks_client_to_retry(self, payment_service, gateway, user, ticket):
        initiation = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)
        gateway.script(NormalizedStatus.TRANSIENT_ERROR)

        view = await payment_service.get_payment_status(initiation.reference)

        assert view['status'] == 'pending'
        assert view['message'] == 'Unable to check payment status, please try again later'

    async def test_status_when_paid__settles_and_returns_ticket(self, session_factory, payment_service, gateway, user, bus, ticket):
        initiation = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)
        gateway.script(NormalizedStatus.PAID)

        view = await payment_service.get_payment_status(initiation.reference)

        assert view['status'] == 'completed'
        assert view['success'] is True
        assert view['message'] == 'Payment successful'
        assert view['ticket']['status'] == 'completed'
        assert view['ticket']['seat_number'] == ticket.seat_number

        again = await payment_service.get_payment_status(initiation.reference)
        assert again['message'] == 'Payment already completed'
        assert len(gateway.polls) == 1

    async def test_status_for_unknown_reference__raises_not_found(self, payment_service):
        with pytest.raises(PaymentNotFoundError):
            await payment_service.get_payment_status('NO-SUCH-REF')

    async def test_history__lists_callers_payments_newest_first(self, payment_service, gateway, user, ticket):
        first = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)
        gateway.script(NormalizedStatus.CANCELLED)
        await payment_service.await_payment(first.reference)
        second = await payment_service.initiate_payment(user.id, ticket.id, TEST_PHONE)

        history = await payment_service.get_payment_history(user.id)

        assert [payment.reference for payment in history] == [second.reference, first.reference]

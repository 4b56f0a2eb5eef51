import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

# Settings are read once; point them at test values before the app is imported
os.environ.setdefault('PAYNOW_INTEGRATION_ID', '12345')
os.environ.setdefault('PAYNOW_INTEGRATION_KEY', 'test-integration-key')
os.environ.setdefault('ENABLE_BACKGROUND_POLLING', 'false')
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

import pytest  # noqa: E402
from sqlalchemy import event, func, select  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from bus_booking_platform.database import create_session_factory  # noqa: E402
from bus_booking_platform.models import Base, Bus, Payment, Ticket, User  # noqa: E402
from bus_booking_platform.models.ticket import TicketStatus  # noqa: E402
from bus_booking_platform.services.payment_gateway import (  # noqa: E402
    GatewayCallback,
    MobilePromptResult,
    NormalizedStatus,
    PaymentHandle,
    normalize_status,
)
from bus_booking_platform.services.polling_supervisor import PollingSupervisor  # noqa: E402
from bus_booking_platform.services.reconciler import PaymentReconciler  # noqa: E402
from bus_booking_platform.utils.exceptions import InvalidCallbackError  # noqa: E402
from bus_booking_platform.utils.retry import RetryConfig  # noqa: E402

TEST_PHONE = '0771234567'
TEST_POLL_URL = 'https://www.paynow.co.zw/Interface/CheckPayment/?guid=test-guid'


class FakeGateway:
    """
    Scripted gateway double.

    ``poll_statuses`` are returned in order; once exhausted the last one
    repeats (PENDING when nothing was scripted).
    """

    def __init__(self, poll_statuses: Optional[List[NormalizedStatus]] = None, reject_with: Optional[Exception] = None):
        self.poll_statuses = list(poll_statuses or [])
        self.reject_with = reject_with
        self.created: List[PaymentHandle] = []
        self.prompts: List[Dict[str, Any]] = []
        self.polls: List[str] = []

    def script(self, *statuses: NormalizedStatus) -> None:
        self.poll_statuses = list(statuses)

    def create_payment(self, reference: str, payer_contact: str, amount: Decimal, description: Optional[str] = None):
        handle = PaymentHandle(reference, payer_contact, Decimal(amount).quantize(Decimal('0.01')), description or '')
        self.created.append(handle)
        return handle

    async def send_mobile_prompt(self, handle: PaymentHandle, phone_number: str, method: str) -> MobilePromptResult:
        self.prompts.append({'reference': handle.reference, 'phone': phone_number, 'method': method})
        if self.reject_with is not None:
            raise self.reject_with
        return MobilePromptResult(
            accepted=True,
            poll_handle=f'{TEST_POLL_URL}-{handle.reference}',
            instructions='Dial *151*2*4# and enter your PIN',
            gateway_reference='PN-1001',
            raw={'status': 'Ok', 'reference': handle.reference},
        )

    async def poll_status(self, poll_handle: str) -> NormalizedStatus:
        self.polls.append(poll_handle)
        if not self.poll_statuses:
            return NormalizedStatus.PENDING
        if len(self.poll_statuses) == 1:
            return self.poll_statuses[0]
        return self.poll_statuses.pop(0)

    def parse_callback(self, payload: Mapping[str, Any]) -> GatewayCallback:
        values = {str(k).lower(): v for k, v in payload.items()}
        if not values.get('reference') or not values.get('status'):
            raise InvalidCallbackError('callback is missing reference or status')
        return GatewayCallback(
            reference=values['reference'],
            status=normalize_status(values['status']),
            raw_status=values['status'],
            poll_handle=values.get('pollurl'),
        )

    def configuration_report(self) -> Dict[str, Any]:
        return {
            'integration_id': 'SET',
            'integration_key': 'SET',
            'result_url': 'http://testserver/api/v1/payments/webhook',
            'return_url': 'http://testserver/tickets',
            'circuit_state': 'closed',
        }


class RecordingDispatcher:
    """Task dispatcher double that records instead of queueing."""

    def __init__(self):
        self.confirmations: List[tuple] = []
        self.polling: List[str] = []

    def dispatch_payment_confirmation(self, payment_id: UUID, ticket_id: UUID) -> None:
        self.confirmations.append((payment_id, ticket_id))

    def schedule_polling(self, reference: str) -> None:
        self.polling.append(reference)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
async def engine(tmp_path):
    """
    File-backed SQLite engine.

    Every transaction starts with BEGIN IMMEDIATE so concurrent writers
    queue on the database lock the way row locks serialize them on
    PostgreSQL.
    """
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'bus_booking_test.db'}",
        connect_args={'timeout': 30},
    )

    @event.listens_for(db_engine.sync_engine, 'connect')
    def _disable_driver_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(db_engine.sync_engine, 'begin')
    def _begin_immediate(connection):
        connection.exec_driver_sql('BEGIN IMMEDIATE')

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def reconciler(session_factory, dispatcher):
    return PaymentReconciler(session_factory, dispatcher)


@pytest.fixture
def supervisor(gateway, reconciler, session_factory):
    return PollingSupervisor(gateway, reconciler, session_factory, interval=3.0, max_attempts=20, sleep=no_sleep)


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
async def user(session_factory):
    async with session_factory() as session:
        async with session.begin():
            passenger = User(
                email='tendai@example.co.zw',
                first_name='Tendai',
                last_name='Moyo',
                phone='+263771234567',
            )
            session.add(passenger)
    return passenger


@pytest.fixture
async def other_user(session_factory):
    async with session_factory() as session:
        async with session.begin():
            passenger = User(email='rudo@example.co.zw', first_name='Rudo', last_name='Chikore')
            session.add(passenger)
    return passenger


async def create_bus(session_factory, total_seats: int = 40, available_seats: Optional[int] = None,
                     price: str = '35.00', route: str = 'Harare to Bulawayo') -> Bus:
    departure = datetime.now(timezone.utc) + timedelta(days=1)
    async with session_factory() as session:
        async with session.begin():
            bus = Bus(
                fleet_number='BUS001',
                bus_type='Luxury Coach',
                route=route,
                departure_time=departure,
                arrival_time=departure + timedelta(hours=6),
                total_seats=total_seats,
                available_seats=total_seats if available_seats is None else available_seats,
                price=Decimal(price),
            )
            session.add(bus)
    return bus


async def create_ticket(session_factory, bus: Bus, owner: User, seat_number: int = 12,
                        status: TicketStatus = TicketStatus.PENDING, ticket_number: Optional[str] = None) -> Ticket:
    async with session_factory() as session:
        async with session.begin():
            ticket = Ticket(
                ticket_number=ticket_number or f'TKT-TEST-{owner.first_name}-{seat_number}-{status.name}',
                bus_id=bus.id,
                user_id=owner.id,
                seat_number=seat_number,
                passenger_name=owner.full_name,
                passenger_email=owner.email,
                departure=bus.origin,
                destination=bus.destination,
                travel_date=bus.departure_time,
                amount=bus.price,
                status=status,
            )
            session.add(ticket)
    return ticket


async def create_pending_payment(session_factory, ticket: Ticket, reference: str,
                                 poll_handle: Optional[str] = TEST_POLL_URL) -> Payment:
    async with session_factory() as session:
        async with session.begin():
            payment = Payment(
                reference=reference,
                ticket_id=ticket.id,
                user_id=ticket.user_id,
                amount=ticket.amount,
                payment_method='ecocash',
                phone_number='+263771234567',
                poll_handle=poll_handle,
            )
            session.add(payment)
    return payment


@pytest.fixture
async def bus(session_factory):
    return await create_bus(session_factory)


@pytest.fixture
async def ticket(session_factory, bus, user):
    return await create_ticket(session_factory, bus, user)


async def load_bus(session_factory, bus_id: UUID) -> Bus:
    async with session_factory() as session:
        return (await session.execute(select(Bus).where(Bus.id == bus_id))).scalar_one()


async def load_ticket(session_factory, ticket_id: UUID) -> Ticket:
    async with session_factory() as session:
        return (await session.execute(select(Ticket).where(Ticket.id == ticket_id))).scalar_one()


async def load_payment(session_factory, reference: str) -> Payment:
    async with session_factory() as session:
        return (await session.execute(select(Payment).where(Payment.reference == reference))).scalar_one()


async def count_payments(session_factory, ticket_id: UUID) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count(Payment.id)).where(Payment.ticket_id == ticket_id))
        return result.scalar_one()



async def count_completed_tickets(session_factory, bus_id: UUID) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(Ticket.id)).where(Ticket.bus_id == bus_id, Ticket.status == TicketStatus.COMPLETED)
        )
        return result.scalar_one()

"""
FastAPI dependencies for authentication and service wiring.
"""

from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import get_settings
from ..database import get_db, get_session_factory
from ..models.user import User
from ..services.bus_service import BusService
from ..services.payment_gateway import PaymentGatewayAdapter
from ..services.payment_service import PaymentService
from ..services.polling_supervisor import PollingSupervisor
from ..services.reconciler import PaymentReconciler
from ..services.ticket_service import TicketService
from ..services.webhook_receiver import WebhookReceiver
from ..tasks.dispatcher import CeleryTaskDispatcher, TaskDispatcher
from .auth import verify_token
from .retry import RetryConfig


# HTTP Bearer token scheme
security = HTTPBearer()


def get_session_factory_dep() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep)
) -> User:
    """
    Get the current authenticated user from JWT token.

    The user is loaded in its own short transaction so no connection is
    held while the request waits on the payment gateway.

    Raises:
        HTTPException: If token is invalid, the user is unknown or inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = verify_token(credentials.credentials)
    if token_data is None or token_data.user_id is None:
        raise credentials_exception

    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        raise credentials_exception

    async with session_factory() as session:
        result = await session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive user"
        )

    return user


def get_payment_gateway(request: Request) -> PaymentGatewayAdapter:
    """The gateway adapter created at startup."""
    return request.app.state.payment_gateway


def get_task_dispatcher() -> TaskDispatcher:
    return CeleryTaskDispatcher()


def get_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
) -> PaymentReconciler:
    return PaymentReconciler(session_factory, dispatcher)


def get_polling_supervisor(
    gateway: PaymentGatewayAdapter = Depends(get_payment_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),
) -> PollingSupervisor:
    settings = get_settings()
    return PollingSupervisor(
        gateway,
        reconciler,
        session_factory,
        interval=settings.payment_poll_interval_seconds,
        max_attempts=settings.payment_poll_max_attempts,
    )


def get_payment_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),
    gateway: PaymentGatewayAdapter = Depends(get_payment_gateway),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
    supervisor: PollingSupervisor = Depends(get_polling_supervisor),
) -> PaymentService:
    return PaymentService(session_factory, gateway, dispatcher, supervisor)


def get_bus_service(db: AsyncSession = Depends(get_db)) -> BusService:
    return BusService(db)


def get_ticket_service(db: AsyncSession = Depends(get_db)) -> TicketService:
    return TicketService(db)


def get_webhook_receiver(
    gateway: PaymentGatewayAdapter = Depends(get_payment_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> WebhookReceiver:
    settings = get_settings()
    return WebhookReceiver(
        gateway,
        reconciler,
        RetryConfig(max_attempts=settings.webhook_max_apply_attempts, base_delay=0.2, max_delay=2.0),
    )

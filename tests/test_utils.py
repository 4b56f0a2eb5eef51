"""
Tests for references, retries, circuit breaking, error mapping and log scrubbing
"""

import json
import logging
from uuid import uuid4

import pytest
from starlette.requests import Request

from bus_booking_platform.middleware.error_handler import ErrorHandlerMiddleware
from bus_booking_platform.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
    CircuitState,
)
from bus_booking_platform.utils.exceptions import (
    ExternalServiceError,
    GatewayUnavailableError,
    PaymentInProgressError,
    ReconciliationError,
    SeatTakenError,
    TicketNotFoundError,
)
from bus_booking_platform.utils.health_check import check_payment_gateway_health
from bus_booking_platform.utils.logging_config import SensitiveDataFilter
from bus_booking_platform.utils.references import (
    generate_payment_reference,
    generate_ticket_number,
    is_valid_mobile_number,
    normalize_mobile_number,
    to_base36,
)
from bus_booking_platform.utils.retry import RetryConfig, retry_async
from tests.conftest import FakeGateway


@pytest.mark.unit
class TestReferences:

    def test_ticket_number__is_prefixed_upper_case_and_unique(self):
        numbers = {generate_ticket_number() for _ in range(50)}

        assert len(numbers) == 50
        assert all(number.startswith('TKT') and number == number.upper() for number in numbers)

    def test_ticket_number__encodes_timestamp_in_base36(self):
        assert generate_ticket_number(now_ms=36 ** 3).startswith('TKT1000')
        assert to_base36(0) == '0'
        assert to_base36(35) == 'Z'

    def test_payment_reference__starts_with_ticket_prefix(self):
        ticket_id = uuid4()

        reference = generate_payment_reference(ticket_id)

        assert reference.startswith(f'TKT{ticket_id.hex[:8].upper()}')
        assert reference != generate_payment_reference(ticket_id)

    @pytest.mark.parametrize(
        'number, valid',
        [
            ('0771234567', True),
            ('+263 78 123 4567', True),
            ('071-123-4567', True),
            ('0731234567', True),
            ('0741234567', False),
            ('077123456', False),
            ('263771234567', False),
            ('', False),
        ],
    )
    def test_mobile_number_validation(self, number, valid):
        assert is_valid_mobile_number(number) is valid

    def test_normalize_mobile_number__uses_international_form(self):
        assert normalize_mobile_number('077 123 4567') == '+263771234567'
        assert normalize_mobile_number('+263771234567') == '+263771234567'


@pytest.mark.unit
class TestRetryAsync:

    async def test_retry__succeeds_after_transient_failures(self, fast_retry):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ReconciliationError('REF-1')
            return 'done'

        assert await retry_async(flaky, fast_retry, (ReconciliationError,)) == 'done'
        assert len(calls) == 3

    async def test_retry__stops_on_non_retryable(self, fast_retry):
        calls = []

        async def not_found():
            calls.append(1)
            raise TicketNotFoundError('abc')

        with pytest.raises(TicketNotFoundError):
            await retry_async(not_found, fast_retry, (Exception,), (TicketNotFoundError,))

        assert len(calls) == 1

    async def test_retry__raises_last_error_when_exhausted(self, fast_retry):
        async def always_fails():
            raise ReconciliationError('REF-2')

        with pytest.raises(ReconciliationError):
            await retry_async(always_fails, fast_retry, (ReconciliationError,))

    def test_delay__grows_exponentially_up_to_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)

        assert [config.delay_for(attempt) for attempt in range(4)] == [1.0, 2.0, 4.0, 5.0]


@pytest.mark.unit
class TestCircuitBreaker:

    async def test_breaker__opens_then_recovers_after_timeout(self):
        breaker = CircuitBreaker(
            'unit-test',
            CircuitBreakerConfig(failure_threshold=2, recovery_timeout=0, expected_exception=ConnectionError,
                                 success_threshold=1, timeout=1),
        )

        async def fail():
            raise ConnectionError('down')

        async def succeed():
            return 'up'

        for _ in range(2):
            with pytest.raises(ExternalServiceError):
                await breaker.call(fail)

        # Zero recovery timeout: the next call is the half-open trial
        assert await breaker.call(succeed) == 'up'
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()['state_changes']['half_open_to_closed'] == 1

    async def test_open_breaker__fails_fast(self):
        breaker = CircuitBreaker(
            'unit-test-open',
            CircuitBreakerConfig(failure_threshold=1, recovery_timeout=60, expected_exception=ConnectionError, timeout=1),
        )
        calls = []

        async def fail():
            calls.append(1)
            raise ConnectionError('down')

        with pytest.raises(ExternalServiceError):
            await breaker.call(fail)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(fail)

        assert len(calls) == 1

    def test_gateway_health__unhealthy_when_unconfigured(self):
        class Unconfigured(FakeGateway):
            def configuration_report(self):
                report = super().configuration_report()
                report['integration_key'] = 'MISSING'
                return report

        assert check_payment_gateway_health(FakeGateway()).healthy is True
        assert check_payment_gateway_health(Unconfigured()).healthy is False
        assert check_payment_gateway_health(None).healthy is False


@pytest.mark.unit
class TestErrorHandlerMiddleware:

    @pytest.fixture
    def middleware(self):
        return ErrorHandlerMiddleware(app=None)

    @pytest.fixture
    def request_stub(self):
        return Request({
            'type': 'http',
            'method': 'POST',
            'scheme': 'http',
            'server': ('testserver', 80),
            'client': ('127.0.0.1', 50000),
            'path': '/api/v1/payments/initiate',
            'query_string': b'',
            'headers': [],
        })

    @pytest.mark.parametrize(
        'exc, status_code, error_code',
        [
            (PaymentInProgressError('t-1', 'REF-1'), 409, 'PAYMENT_IN_PROGRESS'),
            (SeatTakenError('b-1', 4), 409, 'SEAT_TAKEN'),
            (TicketNotFoundError('t-2'), 404, 'NOT_FOUND'),
            (GatewayUnavailableError(), 503, 'GATEWAY_UNAVAILABLE'),
        ],
    )
    def test_platform_errors__map_to_status_codes(self, middleware, request_stub, exc, status_code, error_code):
        response = middleware.handle_exception(request_stub, exc, 'error-1')

        body = json.loads(response.body)
        assert response.status_code == status_code
        assert body['error']['error_code'] == error_code
        assert body['error_id'] == 'error-1'

    def test_gateway_unavailable__sets_retry_after(self, middleware, request_stub):
        response = middleware.handle_exception(request_stub, GatewayUnavailableError(), 'error-2')

        assert response.headers['Retry-After'] == '30'

    def test_ledger_failure__hides_details(self, middleware, request_stub):
        response = middleware.handle_exception(request_stub, ReconciliationError('REF-9'), 'error-3')

        body = json.loads(response.body)
        assert response.status_code == 500
        assert body['error']['message'] == 'An internal error occurred'
        assert 'details' not in body['error']

    def test_unexpected_error__is_internal(self, middleware, request_stub):
        response = middleware.handle_exception(request_stub, RuntimeError('boom'), 'error-4')

        assert response.status_code == 500
        assert json.loads(response.body)['error']['error_code'] == 'INTERNAL_ERROR'


@pytest.mark.unit
def test_sensitive_data_filter__masks_credentials_and_emails():
    record = logging.LogRecord('test', logging.INFO, __file__, 1, 'payer tendai@example.co.zw', None, None)
    record.details = {'integration_key': 'abc', 'reference': 'REF-1'}

    SensitiveDataFilter().filter(record)

    assert record.msg == 'payer ***EMAIL***'
    assert record.details == {'integration_key': '***MASKED***', 'reference': 'REF-1'}

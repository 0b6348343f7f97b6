"""Unit tests for the schedule webhook client"""

import asyncio
import json
import uuid
import httpx
import pytest
from datetime import date
from decimal import Decimal
from repayment_engine.domain.models import Breakdown, BreakdownEntry, ScheduleChangeResult
from repayment_engine.infrastructure.clients.schedule_webhook import ScheduleWebhookClient, build_schedule_event


def _client(handler, max_retries: int = 3) -> ScheduleWebhookClient:
    return ScheduleWebhookClient(
        webhook_url="http://rails.test/hooks",
        transport=httpx.MockTransport(handler),
        max_retries=max_retries,
        backoff_base=0,
    )


def test_send_schedule_event_posts_payload():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    asyncio.run(_client(handler).send_schedule_event({"event": "SCHEDULE_RECALCULATED"}))

    assert received == [{"event": "SCHEDULE_RECALCULATED"}]


def test_send_schedule_event_retries_server_errors():
    """Test transient 5xx responses are retried until success"""
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(503 if len(attempts) < 3 else 200)

    asyncio.run(_client(handler).send_schedule_event({"event": "SCHEDULE_RECALCULATED"}))

    assert len(attempts) == 3


def test_send_schedule_event_gives_up_after_max_retries():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(httpx.ConnectError):
        asyncio.run(_client(handler, max_retries=2).send_schedule_event({}))

    assert len(attempts) == 2


def test_build_schedule_event_is_json_safe():
    loan_id = uuid.uuid4()
    result = ScheduleChangeResult(
        loan_id=loan_id,
        trigger="manual",
        new_remaining_balance=Decimal("979.00"),
        breakdown=Breakdown(
            entries=[
                BreakdownEntry(
                    payment_number=1,
                    due_date=date(2025, 3, 3),
                    amount=Decimal("200.00"),
                    interest=Decimal("23.66"),
                    principal=Decimal("176.34"),
                    remaining_balance=Decimal("802.66"),
                )
            ]
        ),
    )

    event = build_schedule_event(result)

    assert json.loads(json.dumps(event)) == event
    assert event["event"] == "SCHEDULE_RECALCULATED"
    assert event["loan_id"] == str(loan_id)
    assert event["breakdown"][0] == {
        "payment_number": 1,
        "due_date": "2025-03-03",
        "amount": "200.00",
        "interest": "23.66",
        "principal": "176.34",
        "remaining_balance": "802.66",
    }

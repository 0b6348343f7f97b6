"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from repayment_engine.infrastructure.clients.schedule_webhook import ScheduleWebhookClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_schedule_webhook_client() -> ScheduleWebhookClient:
    """Provide schedule webhook client instance"""
    return ScheduleWebhookClient()

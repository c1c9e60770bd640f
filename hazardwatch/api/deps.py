"""
FastAPI dependencies — service container and operator guard.

The lifespan in main.py builds one Services instance and stores it on
app.state; routes receive it through get_services.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from hazardwatch.alerts.matcher import AlertMatcher
from hazardwatch.core.config import settings
from hazardwatch.core.errors import OperatorAuthError
from hazardwatch.pipeline.orchestrator import FetchOrchestrator
from hazardwatch.pipeline.scheduler import HazardScheduler
from hazardwatch.pipeline.synthetic import SyntheticInjector
from hazardwatch.storage.base import HazardStore, NotificationStore, SubscriberStore


@dataclass
class Services:
    hazard_store: HazardStore
    subscriber_store: SubscriberStore
    notification_store: NotificationStore
    matcher: AlertMatcher
    orchestrator: FetchOrchestrator
    scheduler: HazardScheduler
    injector: SyntheticInjector


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_operator(x_operator_token: Optional[str] = Header(None)) -> None:
    """
    Guard for operator endpoints.

    With OPERATOR_TOKEN unset the guard is open outside production and
    closed in production.
    """
    expected = settings.OPERATOR_TOKEN
    if expected is None:
        if settings.is_production:
            raise OperatorAuthError("Operator endpoints are disabled")
        return
    if not x_operator_token or not secrets.compare_digest(x_operator_token, expected):
        raise OperatorAuthError()

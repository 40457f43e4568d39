from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any


class FakeClock:
    """Deterministic clock; every call returns the current instant unchanged."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


def ticket_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Login fails on Chrome",
        "application_name": "Portal",
        "description": "The login button does nothing after entering credentials.",
        "steps_to_reproduce": "Open the portal in Chrome, enter credentials, press Login.",
        "severity": "high",
        "customer_name": "Ada Lovelace",
        "customer_email": "ada@example.com",
        "customer_phone": "+44 20 7946 0000",
        "image_urls": ["https://cdn.example.com/shot.png"],
        "video_urls": [],
    }
    payload.update(overrides)
    return payload

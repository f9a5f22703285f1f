from __future__ import annotations

from datetime import datetime, timezone
from typing import List

import pytest

from schoolhub.core.config import ENV_BINDINGS
from schoolhub.schools.models import ContactInfo, School, SchoolSettings


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """No bound variable from the outer shell may leak into a resolution."""
    for name in ENV_BINDINGS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Monotonic clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_school(
    school_id: str = "school-1",
    domains: List[str] = None,
    email: str = "a@x.com",
    phone: str = "555",
) -> School:
    return School(
        id=school_id,
        name="Creative Coding",
        registered_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        settings=SchoolSettings(
            color="#ff0000",
            domains=domains if domains is not None else ["school.example.com"],
            contact_info=ContactInfo(email=email, phone=phone),
        ),
    )

"""Shared fixtures: a context on a manual clock with in-memory storage."""
from __future__ import annotations

import pytest

from family_canvas.context import AppContext
from family_canvas.persistence import MemoryStorage
from family_canvas.scheduler import ManualClock, TickScheduler


class StepClock:
    """Wall clock that advances one millisecond per reading."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class NotificationLog:
    def __init__(self) -> None:
        self.entries: list[tuple[str, str, str]] = []

    def __call__(self, level: str, title: str, message: str) -> None:
        self.entries.append((level, title, message))

    @property
    def levels(self) -> list[str]:
        return [level for level, _, _ in self.entries]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> TickScheduler:
    return TickScheduler(clock)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def notifications() -> NotificationLog:
    return NotificationLog()


@pytest.fixture
def ctx(scheduler: TickScheduler, storage: MemoryStorage, notifications: NotificationLog) -> AppContext:
    return AppContext(storage=storage, scheduler=scheduler, notifier=notifications, wall_clock=StepClock())


def _person(name: str, gender: str = "female", **extra) -> dict:
    return {"name": name, "gender": gender, **extra}


@pytest.fixture
def family(ctx: AppContext) -> AppContext:
    """Five people: p1+p2 married, p3 is p1's child, p4 and p5 unrelated."""
    ctx.save_person(_person("Anna", surname="Petrova"))
    ctx.save_person(_person("Boris", "male", surname="Petrov"))
    ctx.connect("p1", "p2", "spouse")
    ctx.save_person(_person("Clara", mother_id="p1", dob="1990"))
    ctx.save_person(_person("Dmitri", "male"))
    ctx.save_person(_person("Elena", maiden_name="Ivanova"))
    return ctx


@pytest.fixture
def make_context(notifications: NotificationLog):
    """Factory for a second session over the same storage."""

    def factory(storage, notifier=None) -> AppContext:
        return AppContext(
            storage=storage,
            scheduler=TickScheduler(ManualClock()),
            notifier=notifier or notifications,
            wall_clock=StepClock(start=1_800_000_000_000),
        )

    return factory

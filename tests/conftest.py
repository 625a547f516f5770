"""Shared fixtures: a seeded salon and a silenced event bus."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, patch

import pytest

from tests.fakes import Salon, build_salon

EMITTING_MODULES = (
    "salonbook.scheduling.appointments",
    "salonbook.scheduling.queue",
    "salonbook.scheduling.stylist_schedule",
)


@pytest.fixture(autouse=True)
def emitted() -> Iterator[dict[str, AsyncMock]]:
    """Replace ``emit`` in every service module; yields the mocks by module."""
    mocks: dict[str, AsyncMock] = {}
    patches = [patch(f"{module}.emit", new_callable=AsyncMock) for module in EMITTING_MODULES]
    for module, p in zip(EMITTING_MODULES, patches):
        mocks[module.rsplit(".", 1)[-1]] = p.start()
    yield mocks
    for p in patches:
        p.stop()


@pytest.fixture()
def salon() -> Salon:
    return build_salon()

from __future__ import annotations

import asyncio
from typing import Iterator

import pytest

from bank_double import FakeBank


@pytest.fixture
def bank() -> Iterator[FakeBank]:
    fake = FakeBank()
    yield fake
    asyncio.run(fake.aclose())

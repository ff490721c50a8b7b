from __future__ import annotations

import asyncio

import pytest

from glc.gate import ConcurrencyGate


@pytest.mark.parametrize("capacity", [0, -3])
def test_gate_rejects_non_positive_capacity(capacity):
    with pytest.raises(ValueError):
        ConcurrencyGate(capacity)


@pytest.mark.asyncio
async def test_gate_never_exceeds_capacity():
    gate = ConcurrencyGate(2)
    observed: list[int] = []

    async def worker() -> None:
        async with gate.slot():
            observed.append(gate.in_flight)
            await asyncio.sleep(0.005)

    await asyncio.gather(*(worker() for _ in range(8)))

    assert max(observed) <= 2
    assert gate.peak == 2
    assert gate.in_flight == 0
    assert gate.acquired_total == 8


@pytest.mark.asyncio
async def test_gate_releases_slot_on_error():
    gate = ConcurrencyGate(1)

    with pytest.raises(RuntimeError):
        async with gate.slot():
            raise RuntimeError("boom")

    assert gate.in_flight == 0
    async with gate.slot():
        assert gate.in_flight == 1

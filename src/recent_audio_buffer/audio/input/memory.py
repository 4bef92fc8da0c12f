"""Ring buffer capacity planning and allocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import psutil

from ..types import AudioConfig
from .ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

MAX_BUFFER_SIZE_B = 150_000_000
# Share of currently available system memory a buffer may claim.
AVAILABLE_MEMORY_FRACTION = 0.5


@dataclass
class CapacityPlan:
    requested: int
    capacity: int
    warnings: list[str] = field(default_factory=list)

    @property
    def clamped(self) -> bool:
        return self.capacity < self.requested


def available_memory_bytes() -> Optional[int]:
    try:
        return int(psutil.virtual_memory().available)
    except (OSError, RuntimeError) as e:
        logger.warning("Could not estimate available memory: %s", e)
        return None


def plan_capacity(
    config: AudioConfig,
    max_bytes: int = MAX_BUFFER_SIZE_B,
    available: Optional[int] = None,
) -> CapacityPlan:
    """
    Capacity = rate x bytes/sample x seconds, clamped to the hard maximum and
    to a share of available memory, rounded down to a whole sample.
    """
    requested = config.requested_capacity_bytes
    plan = CapacityPlan(requested=requested, capacity=requested)

    if plan.capacity > max_bytes:
        plan.capacity = max_bytes
        plan.warnings.append(
            f"Requested buffer of {requested} bytes exceeds the maximum of {max_bytes} bytes"
        )

    if available is None:
        available = available_memory_bytes()
    if available is not None:
        budget = int(available * AVAILABLE_MEMORY_FRACTION)
        if plan.capacity > budget:
            plan.capacity = max(budget, 0)
            plan.warnings.append(
                f"Buffer limited to {plan.capacity} bytes by available memory ({available} bytes free)"
            )

    plan.capacity -= plan.capacity % config.bytes_per_sample
    return plan


@dataclass
class AllocationResult:
    ring: RingBuffer
    degraded: bool = False
    failed: bool = False
    error: Optional[BaseException] = None


def allocate_ring(
    capacity: int,
    bytes_per_sample: int = 1,
    factory: Callable[[int], RingBuffer] = RingBuffer,
) -> AllocationResult:
    """
    Allocate the ring storage, halving the capacity and retrying once on
    MemoryError. If that fails too a zero-size ring is returned.
    """
    try:
        return AllocationResult(ring=factory(capacity))
    except MemoryError as e:
        logger.warning("Failed to allocate %d bytes for the ring buffer: %s", capacity, e)

    halved = capacity // 2
    halved -= halved % bytes_per_sample
    try:
        ring = factory(halved)
        logger.warning("Ring buffer degraded to %d bytes", halved)
        return AllocationResult(ring=ring, degraded=True)
    except MemoryError as e:
        logger.error("Failed to allocate degraded ring buffer of %d bytes: %s", halved, e)
        return AllocationResult(ring=RingBuffer(0), failed=True, error=e)

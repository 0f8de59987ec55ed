"""
Drivers for step generators.

Long-running work (local training, explanations) is written as a generator
that yields at its suspension points and returns its result. Synchronous
callers drain it with ``run_to_completion``; coroutines use
``arun_to_completion`` so other tasks get scheduled between steps.
"""

import asyncio
from typing import Any, Callable, Generator, Optional, TypeVar

T = TypeVar("T")


def run_to_completion(
    gen: Generator[Any, None, T],
    on_step: Optional[Callable[[Any], None]] = None,
) -> T:
    while True:
        try:
            step = next(gen)
        except StopIteration as stop:
            return stop.value
        if on_step is not None and step is not None:
            on_step(step)


async def arun_to_completion(
    gen: Generator[Any, None, T],
    on_step: Optional[Callable[[Any], None]] = None,
) -> T:
    while True:
        try:
            step = next(gen)
        except StopIteration as stop:
            return stop.value
        if on_step is not None and step is not None:
            on_step(step)
        await asyncio.sleep(0)

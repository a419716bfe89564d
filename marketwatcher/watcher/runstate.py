"""Cooperative cancellation for a running watcher."""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone


class CancellationToken:
    """One-shot stop signal, checked at loop tops and able to wake a sleep."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep for ``seconds`` unless cancelled first.

        Returns:
            True if the sleep was interrupted by cancellation
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class RunState:
    running: bool = True
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Set once the run has released its state
    finished: asyncio.Event = field(default_factory=asyncio.Event)

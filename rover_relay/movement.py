"""
Continuous movement: turns press/hold/release gestures into a bounded command stream.

While a gesture is held the active command is re-sent every interval. The
device stops on its own when it stops hearing from us, so this repeat is
the heartbeat that keeps held motion going.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Protocol

from rover_relay.errors import InvalidCommand, RelayError
from rover_relay.messages import Command

logger = logging.getLogger(__name__)


class CommandSender(Protocol):
    async def issue_command(self, cmd: Command) -> Any: ...

    async def issue_stop(self) -> Any: ...


class ContinuousMovementController:
    def __init__(self, sender: CommandSender, interval_s: float = 0.2) -> None:
        self._sender = sender
        self.interval_s = interval_s
        self._active: str | None = None
        self._repeat_task: asyncio.Task[None] | None = None

    @property
    def active_command(self) -> str | None:
        return self._active

    @property
    def is_repeating(self) -> bool:
        return self._active is not None

    def arm(self, kind: str) -> bool:
        """
        Switch state to a held command and arm its repeat.

        Returns False when the command is already held (nothing to emit now).
        Raises InvalidCommand for an empty kind without touching state.
        """
        if isinstance(kind, Enum):
            kind = kind.value
        if not kind or not isinstance(kind, str):
            raise InvalidCommand("command is required")
        if self._active == kind:
            return False
        # Direction change: drop the old repeat without a stop in between.
        self._cancel_repeat()
        self._active = kind
        self._repeat_task = asyncio.create_task(self._repeat(kind))
        return True

    def disarm(self) -> None:
        self._cancel_repeat()
        self._active = None

    async def begin(self, kind: str) -> None:
        """Start (or switch to) a held command. Re-beginning the active command is a no-op."""
        if self.arm(kind):
            await self.emit(self._active)

    async def end(self) -> None:
        """Release: always sends exactly one stop, even when nothing was held."""
        self.disarm()
        await self.emit_stop()

    async def emit(self, kind: str) -> None:
        try:
            await self._sender.issue_command(Command(kind=kind, continuous=True))
        except RelayError as exc:
            logger.warning(f"Continuous {kind} failed: {exc}")

    async def emit_stop(self) -> None:
        try:
            await self._sender.issue_stop()
        except RelayError as exc:
            logger.warning(f"Stop after gesture end failed: {exc}")

    def _cancel_repeat(self) -> None:
        task, self._repeat_task = self._repeat_task, None
        if task is not None:
            task.cancel()

    async def _repeat(self, kind: str) -> None:
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        next_tick = loop.time() + self.interval_s
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if self._repeat_task is not me or self._active != kind:
                return
            await self.emit(kind)
            next_tick += self.interval_s
            # Skip ticks missed while a slow emission was in flight.
            now = loop.time()
            while next_tick <= now:
                next_tick += self.interval_s

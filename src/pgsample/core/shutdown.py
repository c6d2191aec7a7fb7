# src/pgsample/core/shutdown.py
"""Process-wide cancellation signal.

Row streams, the resolver loop and the pg_dump wrapper all observe one
signal, so a shutdown stops in-flight work promptly instead of waiting for
every sync to finish.
"""

from __future__ import annotations

import asyncio

from pgsample.contracts.errors import SyncCancelledError


class ShutdownSignal:
    """A settable flag that async work can poll or await.

    The underlying asyncio.Event is created lazily so the signal can be
    constructed outside a running loop (module import, CLI setup).
    """

    def __init__(self) -> None:
        self._triggered = False
        self._event: asyncio.Event | None = None

    @property
    def triggered(self) -> bool:
        return self._triggered

    def trigger(self) -> None:
        """Signal shutdown. Idempotent."""
        self._triggered = True
        if self._event is not None:
            self._event.set()

    def raise_if_triggered(self) -> None:
        """Raise SyncCancelledError when shutdown has been requested."""
        if self._triggered:
            raise SyncCancelledError("Sync cancelled by shutdown")

    async def wait(self) -> None:
        """Block until trigger() is called."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._triggered:
                self._event.set()
        await self._event.wait()

    def reset(self) -> None:
        """Clear the signal (for tests and server restarts)."""
        self._triggered = False
        self._event = None


shutdown_signal = ShutdownSignal()

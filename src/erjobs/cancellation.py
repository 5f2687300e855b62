"""
Cancellation signal shared by one job execution.

A single CancelToken is created by the caller (the background processor,
or a test) and threaded through the orchestrator, every stage, the pool
runner and each provider call.
"""

from __future__ import annotations

import asyncio

from erjobs.exceptions import JobCancelledError


class CancelToken:
    """One-shot, awaitable cancellation flag.

    Firing is idempotent. The token never resets: a new execution gets a
    new token, or a child token linked to a parent.
    """

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: list[CancelToken] = []
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Fire the token and every child token."""
        if self._event.is_set():
            return
        self._reason = reason or "cancelled"
        self._event.set()
        for child in self._children:
            child.cancel(self._reason)

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early if the token fires.

        Returns:
            True if the token fired during (or before) the sleep.
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def raise_if_cancelled(self) -> None:
        """Raise JobCancelledError if the token has fired."""
        if self.cancelled:
            raise JobCancelledError(
                f"Job cancelled: {self._reason}",
                context={"reason": self._reason},
            )

"""
Text completion capability.

The stages need exactly one thing from a language model: given a system
text and a user text, return the reply text. Anything with a matching
``complete`` coroutine satisfies the protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from erjobs.cancellation import CancelToken


@runtime_checkable
class TextCompletion(Protocol):
    """Protocol for chat completion clients."""

    async def complete(
        self,
        system_text: str,
        user_text: str,
        cancel: CancelToken | None = None,
    ) -> str:
        """Return the model's reply.

        Raises:
            LLMError: If the request fails.
            JobCancelledError: If ``cancel`` fires first.
        """
        ...

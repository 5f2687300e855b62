"""Language model capability and clients."""

from erjobs.llm.base import TextCompletion
from erjobs.llm.openai_client import OpenAICompletion

__all__ = ["OpenAICompletion", "TextCompletion"]

"""
Input sanitization for prompt injection defense.

Job inputs (symbol, company name) and provider text (headlines) end up
inside LLM prompts. Everything passes through here first.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum

MAX_SYMBOL_LENGTH = 10
MAX_COMPANY_NAME_LENGTH = 200
MAX_INPUT_LENGTH = 500

_SYMBOL_RE = re.compile(r"^[A-Z0-9.\-]{1,10}$")


class ThreatLevel(str, Enum):
    """Threat level of detected injection attempt."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity(self) -> int:
        return {
            ThreatLevel.NONE: 0,
            ThreatLevel.LOW: 1,
            ThreatLevel.MEDIUM: 2,
            ThreatLevel.HIGH: 3,
        }[self]


@dataclass
class SanitizationResult:
    """Result of input sanitization."""

    original_length: int
    sanitized_text: str
    threat_level: ThreatLevel
    threats_detected: list[str] = field(default_factory=list)

    @property
    def is_safe(self) -> bool:
        return self.threat_level in (ThreatLevel.NONE, ThreatLevel.LOW)


class InputSanitizer:
    """Strips control characters and instruction-override phrases.

    Matched phrases are removed rather than rejected: a company name that
    happens to contain "system:" still yields a usable job.
    """

    INJECTION_PATTERNS = [
        (r"ignore\s+(all\s+)?(previous|above|prior)(\s+instructions?)?", ThreatLevel.HIGH),
        (r"disregard\s+(all\s+)?(previous|above|prior)(\s+instructions?)?", ThreatLevel.HIGH),
        (r"forget\s+(all\s+)?previous(\s+instructions?)?", ThreatLevel.HIGH),
        (r"new\s+instructions\s*:", ThreatLevel.HIGH),
        (r"\b(system|assistant|user)\s*:", ThreatLevel.MEDIUM),
        (r"\[/?INST\]", ThreatLevel.MEDIUM),
        (r"<\|im_(start|end)\|>", ThreatLevel.MEDIUM),
        (r"<\|system\|>", ThreatLevel.HIGH),
    ]

    def __init__(self, max_length: int = MAX_INPUT_LENGTH) -> None:
        self.max_length = max_length

    def sanitize(self, text: str | None) -> SanitizationResult:
        """Sanitize one input string."""
        if text is None or not text.strip():
            return SanitizationResult(0, "", ThreatLevel.NONE)

        original_length = len(text)
        threats: list[str] = []
        max_threat = ThreatLevel.NONE

        cleaned = "".join(
            ch for ch in text
            if ch in "\n\r\t" or not unicodedata.category(ch).startswith("C")
        )

        for pattern, level in self.INJECTION_PATTERNS:
            if re.search(pattern, cleaned, re.IGNORECASE):
                threats.append(pattern)
                if level.severity > max_threat.severity:
                    max_threat = level
                cleaned = re.sub(pattern, "", cleaned, flags=re.IGNORECASE)

        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned).strip()
        if len(cleaned) > self.max_length:
            cleaned = cleaned[: self.max_length]

        return SanitizationResult(
            original_length=original_length,
            sanitized_text=cleaned,
            threat_level=max_threat,
            threats_detected=threats,
        )


def sanitize_input(text: str | None, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Sanitized text, safe to interpolate into a prompt."""
    return InputSanitizer(max_length=max_length).sanitize(text).sanitized_text


def is_valid_symbol(symbol: str | None) -> bool:
    """Ticker symbols: 1-10 of A-Z, 0-9, '.', '-' (case-insensitive)."""
    if not symbol or not symbol.strip():
        return False
    return bool(_SYMBOL_RE.match(symbol.strip().upper()))

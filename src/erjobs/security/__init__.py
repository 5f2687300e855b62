"""Security hardening for prompt injection defense."""

from erjobs.security.sanitizer import InputSanitizer, is_valid_symbol, sanitize_input

__all__ = ["InputSanitizer", "is_valid_symbol", "sanitize_input"]

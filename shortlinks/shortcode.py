"""Short code generation and custom-code validation.

Codes are drawn with ``nanoid``, which reads from ``os.urandom`` and masks
bytes so every alphabet symbol is equally likely.
"""

import re

from nanoid import generate

from shortlinks.errors import ValidationError

__all__ = ["ALPHABET", "RESERVED_CODES", "CodeGenerator", "validate_custom_code"]

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CUSTOM_CODE_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")
# Paths the application serves itself; a link under one of these would never resolve.
RESERVED_CODES = frozenset({"api", "docs", "health", "metrics", "redoc"})


class CodeGenerator:
    """Produces random candidate codes; collision handling belongs to the caller."""

    def __init__(self, length: int = 8, alphabet: str = ALPHABET) -> None:
        assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
        self.length = length
        self.alphabet = alphabet

    def generate(self) -> str:
        return generate(self.alphabet, self.length)


def validate_custom_code(code: str, min_length: int = 3, max_length: int = 20) -> str:
    code = code.strip()
    if len(code) < min_length or len(code) > max_length:
        raise ValidationError(f"Custom code must be between {min_length} and {max_length} characters")
    if not CUSTOM_CODE_PATTERN.match(code):
        raise ValidationError("Custom code may only contain letters, digits and hyphens")
    if code.lower() in RESERVED_CODES:
        raise ValidationError(f"Custom code '{code}' is reserved")
    return code

"""
Short code generation strategies for SnapURL.
Uses Strategy Pattern to allow different generation algorithms.

Strategies only propose candidates. Uniqueness is checked by
ShortCodeAllocator and finally enforced by the unique index on links.short_code.
"""

import re
import secrets
import string
from abc import ABC, abstractmethod
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from snapurl_app.models.link import Link

MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 30
CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_code(code: str) -> List[str]:
    """
    Validate a short code or custom alias.

    Returns:
        List of problems, empty when the code is valid
    """
    if not code:
        return ["Short code is required"]

    errors = []
    if len(code) < MIN_CODE_LENGTH:
        errors.append(f"Short code is too short (min {MIN_CODE_LENGTH} characters)")
    if len(code) > MAX_CODE_LENGTH:
        errors.append(f"Short code is too long (max {MAX_CODE_LENGTH} characters)")
    if not CODE_PATTERN.match(code):
        errors.append("Short code can only contain letters, numbers, hyphens, and underscores")
    return errors


class ShortCodeStrategy(ABC):
    """Abstract base class for short code generation strategies"""

    @abstractmethod
    def generate(self, attempt: int, db_session: Session) -> str:
        """
        Generate a candidate short code.

        Args:
            attempt: Zero-based attempt number within one allocation
            db_session: Database session for strategies that derive codes from stored rows

        Returns:
            A candidate short code string
        """
        pass


class RandomShortCodeStrategy(ShortCodeStrategy):
    """
    Random generation strategy.
    Picks characters from the base62 alphabet with a CSPRNG.

    Pros: Simple, unpredictable
    Cons: Collision probability grows with the number of stored codes
    """

    def __init__(self, length: int = 7):
        if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
            raise ValueError(
                f"Short code length must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH}"
            )
        self.length = length
        self.characters = string.ascii_letters + string.digits

    def generate(self, attempt: int, db_session: Session) -> str:
        """Generate random short code (attempt number is irrelevant here)"""
        return ''.join(secrets.choice(self.characters) for _ in range(self.length))


class Base62ShortCodeStrategy(ShortCodeStrategy):
    """
    Base62 encoding strategy with ID obfuscation.
    Encodes the next link ID (plus salt) to Base62.

    The next ID is read before insert, so two concurrent creations can propose
    the same code. The loser hits the unique index and the registry allocates
    again; each retry within one allocation also skips ahead by `attempt`.

    Pros: Short, collision-free for sequential creation
    Cons: Predictable if salt is known (but obfuscated)
    """

    BASE62_CHARS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"

    def __init__(self, salt: int = 1000, max_length: int = 7):
        self.salt = salt
        self.max_length = max_length

    def generate(self, attempt: int, db_session: Session) -> str:
        """
        Generate short code using Base62 encoding.

        Process:
        1. Take the highest link ID and add 1 + attempt
        2. Add salt for obfuscation
        3. Encode to Base62, left-padded to the minimum code length

        Note: If encoded string exceeds max_length, raise error.
        This indicates salt or max_length is too small for the link volume.
        """
        last_id = db_session.query(func.max(Link.id)).scalar() or 0
        return self.encode_id(last_id + 1 + attempt)

    def encode_id(self, link_id: int) -> str:
        obfuscated_id = link_id + self.salt
        encoded = self._base62_encode(obfuscated_id).rjust(MIN_CODE_LENGTH, self.BASE62_CHARS[0])

        if len(encoded) > self.max_length:
            raise ValueError(
                f"Generated code '{encoded}' exceeds max length {self.max_length}. "
                f"Link ID: {link_id}, Obfuscated ID: {obfuscated_id}. "
                f"Consider increasing salt or max_length to handle higher volume."
            )

        return encoded

    def _base62_encode(self, number: int) -> str:
        """
        Convert integer to Base62 string.

        Base62 uses: 0-9 (10) + a-z (26) + A-Z (26) = 62 characters
        """
        if number == 0:
            return self.BASE62_CHARS[0]

        result = ""
        while number > 0:
            result = self.BASE62_CHARS[number % 62] + result
            number //= 62

        return result

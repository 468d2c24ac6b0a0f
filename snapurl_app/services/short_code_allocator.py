"""
Short code allocation.

The allocator validates custom aliases and finds a free generated code. Its
uniqueness check is advisory: nothing is reserved, so LinkService must still
handle the unique-index violation at insert time.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from snapurl_app.config import settings
from snapurl_app.exceptions import (
    AliasTakenError,
    AllocationExhaustedError,
    InvalidAliasError,
    InvalidInputError,
)
from snapurl_app.models.link import Link
from snapurl_app.services.short_code_factory import ShortCodeFactory
from snapurl_app.services.short_code_strategies import ShortCodeStrategy, validate_code

logger = logging.getLogger(__name__)

# Paths served by the app itself
RESERVED_ALIASES = {"api", "docs", "redoc", "health", "admin", "static"}


class ShortCodeAllocator:
    """Checks custom aliases and generates unique short codes."""

    def __init__(
        self,
        db: Session,
        strategy: Optional[ShortCodeStrategy] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.strategy = strategy or ShortCodeFactory.create_strategy()
        self.max_attempts = max_attempts or settings.short_code_max_attempts

    def allocate(self, custom_alias: Optional[str] = None) -> str:
        """
        Return a code that is free in both the short code and alias namespaces.

        Raises:
            InvalidAliasError: malformed alias
            AliasTakenError: alias collides with an existing code or alias
            AllocationExhaustedError: no free generated code within max_attempts
        """
        if custom_alias is not None:
            alias = self.validate_alias(custom_alias)
            if self.is_code_taken(alias):
                raise AliasTakenError(alias)
            return alias

        return self._generate_unique_code()

    def validate_alias(self, alias: str) -> str:
        if not settings.allow_custom_alias:
            raise InvalidInputError("Custom aliases are not allowed on this instance")

        alias = alias.strip()
        errors = validate_code(alias)
        if errors:
            raise InvalidAliasError(f"Invalid custom alias: {', '.join(errors)}")
        if alias.lower() in RESERVED_ALIASES:
            raise InvalidAliasError(f"Invalid custom alias: '{alias}' is reserved")
        return alias

    def is_code_taken(self, code: str) -> bool:
        existing = self.db.query(Link.id).filter(
            or_(Link.short_code == code, Link.custom_alias == code)
        ).first()
        return existing is not None

    def is_alias_available(self, alias: str) -> bool:
        """Validate the alias and report whether it is free right now."""
        return not self.is_code_taken(self.validate_alias(alias))

    def _generate_unique_code(self) -> str:
        for attempt in range(self.max_attempts):
            try:
                code = self.strategy.generate(attempt, self.db)
            except ValueError as e:
                logger.critical(f"Short code strategy cannot produce codes: {e}")
                raise AllocationExhaustedError(attempt + 1) from e

            if not self.is_code_taken(code):
                return code

            logger.debug(f"Short code collision on attempt {attempt + 1}: {code}")

        logger.critical(
            f"Short code space exhausted after {self.max_attempts} attempts "
            f"(strategy={type(self.strategy).__name__}); increase short_code_length"
        )
        raise AllocationExhaustedError(self.max_attempts)

"""
Identifier normalization.

An account identifier reaches us in up to three surface forms: raw,
prefixed (``user_<raw>``) and unprefixed. The store keys each string
separately, so every lookup and alias write goes through this module.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DEFAULT_ALIAS_PREFIX = "user_"
DEFAULT_RESERVED_PREFIXES = ("test_",)
UNKNOWN_IDENTIFIER = "unknown_user"


def strip_prefix(identifier: str, prefix: str = DEFAULT_ALIAS_PREFIX) -> str:
    """Remove a leading prefix if present."""
    if identifier.startswith(prefix):
        return identifier[len(prefix):]
    return identifier


def ensure_prefix(identifier: str, prefix: str = DEFAULT_ALIAS_PREFIX) -> str:
    """Add the prefix unless the identifier already carries it."""
    if identifier.startswith(prefix):
        return identifier
    return f"{prefix}{identifier}"


@dataclass(frozen=True)
class IdentityPolicy:
    """Prefix rules shared by the write path and the read path."""
    alias_prefix: str = DEFAULT_ALIAS_PREFIX
    reserved_prefixes: Tuple[str, ...] = field(default=DEFAULT_RESERVED_PREFIXES)
    unknown_identifier: str = UNKNOWN_IDENTIFIER

    def __post_init__(self):
        if not self.alias_prefix:
            raise ValueError("alias_prefix cannot be empty")
        if not self.unknown_identifier:
            raise ValueError("unknown_identifier cannot be empty")

    def is_reserved(self, identifier: str) -> bool:
        """True for test/synthetic identifiers that never get aliases."""
        return any(identifier.startswith(p) for p in self.reserved_prefixes)

    def alias_form(self, identifier: Optional[str]) -> Optional[str]:
        """Return the opposite prefix-form of an identifier.

        Returns None when no alias should be written: missing identifier,
        reserved marker, or an alias that would be empty or identical.
        """
        if not isinstance(identifier, str) or not identifier:
            return None
        if self.is_reserved(identifier):
            return None

        if identifier.startswith(self.alias_prefix):
            alias = strip_prefix(identifier, self.alias_prefix)
        else:
            alias = ensure_prefix(identifier, self.alias_prefix)

        if not alias or alias == identifier:
            return None
        return alias

    def candidate_forms(self, identifier: str) -> List[str]:
        """Ordered lookup forms: original, unprefixed, prefixed.

        Duplicates are dropped while keeping order. Empty, non-text or
        reserved identifiers yield only themselves.
        """
        if not isinstance(identifier, str) or not identifier:
            return [identifier]
        if self.is_reserved(identifier):
            return [identifier]

        forms: List[str] = []
        for form in (
            identifier,
            strip_prefix(identifier, self.alias_prefix),
            ensure_prefix(identifier, self.alias_prefix),
        ):
            if form and form not in forms:
                forms.append(form)
        return forms


DEFAULT_POLICY = IdentityPolicy()


def candidate_forms(identifier: str) -> List[str]:
    """Lookup forms under the default policy."""
    return DEFAULT_POLICY.candidate_forms(identifier)


def alias_form(identifier: Optional[str]) -> Optional[str]:
    """Alias under the default policy."""
    return DEFAULT_POLICY.alias_form(identifier)

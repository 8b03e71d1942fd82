"""
Custom Exceptions
Engine-specific error handling.

Business conditions (zero coverage, missing tariff, expired insurance) are
reported as data on the calculation result. Exceptions are reserved for
programmer errors, malformed rule definitions and unreachable collaborators.
"""

from typing import Optional


class CoverageEngineError(Exception):
    """Base class for all coverage engine errors"""

    default_detail = "Coverage engine error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class PreconditionViolation(CoverageEngineError):
    """Raised when a caller passes null, negative or wrongly typed inputs"""

    default_detail = "Precondition violated"


class RuleDefinitionError(CoverageEngineError):
    """Raised when a stored business rule cannot be turned into a typed rule"""

    default_detail = "Invalid business rule definition"

    def __init__(self, detail: Optional[str] = None, rule_id: Optional[int] = None):
        self.rule_id = rule_id
        super().__init__(detail)


class LookupUnavailableError(CoverageEngineError):
    """Raised when an external lookup collaborator cannot be reached"""

    default_detail = "Lookup collaborator unavailable"

    def __init__(self, detail: Optional[str] = None, lookup: Optional[str] = None):
        self.lookup = lookup
        super().__init__(detail)

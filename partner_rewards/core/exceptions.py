"""
Error taxonomy for the rewards engine.

Services raise these; the API layer maps them to HTTP status codes
(see main.register_exception_handlers).
"""

from typing import Dict, Optional


class RewardsError(Exception):
    """Base exception for rewards engine errors."""
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(RewardsError):
    """Malformed input, missing/short reason, invalid tier target."""
    status_code = 400


class ForbiddenError(RewardsError):
    """Actor lacks admin rights for a manual override."""
    status_code = 403


class NotFoundError(RewardsError):
    """Unknown partner or achievement id."""
    status_code = 404


class InternalError(RewardsError):
    """Config store or persistence layer unreachable."""
    status_code = 503

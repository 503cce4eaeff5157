"""Error taxonomy shared by the services.

Every error carries a ``user_message`` that the document facade hands to the
notifier; the technical message stays in the logs.
"""
from __future__ import annotations
from typing import Any, List, Optional


class BillingError(Exception):
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(BillingError):
    user_message = "Please check the form: some required fields are missing or invalid."

    def __init__(self, message: str = "", *, details: Optional[List[Any]] = None, **kw):
        super().__init__(message, **kw)
        self.details = details or []


class AccessDenied(BillingError):
    user_message = "You do not have permission to access this document."


class NotFound(BillingError):
    user_message = "The requested document could not be found."


class CollaboratorFailure(BillingError):
    user_message = "We could not reach the server. Please try again."


class InvalidCredentials(BillingError):
    user_message = "Invalid email or password."


class LayoutError(BillingError):
    """Raised for malformed documents handed to the layout engine."""
    user_message = "The document is incomplete and cannot be printed."

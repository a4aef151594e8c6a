"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID

from app.models.api import ItemKind
from app.models.domain import AssetKind


class StudioError(Exception):
    """Base exception for all service errors."""

    pass


# ============================================================================
# Webhook Errors
# ============================================================================


class WebhookVerificationError(StudioError):
    """Raised when an IPN notification fails authenticity checks."""

    def __init__(self, reason: str, order_id: str | None = None) -> None:
        self.reason = reason
        self.order_id = order_id
        super().__init__(f"Webhook verification failed: {reason}")


class InvalidPaymentEventError(StudioError):
    """Raised when a verified IPN lacks the fields the ledger needs."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid payment event: {message}")


# ============================================================================
# Lookup Errors
# ============================================================================


class ItemNotFoundError(StudioError):
    """Raised when a class, course or session doesn't exist."""

    def __init__(self, kind: str, reference: UUID | str) -> None:
        self.kind = kind
        self.reference = reference
        super().__init__(f"{kind.capitalize()} not found: {reference}")


class UserNotFoundError(StudioError):
    """Raised when a user doesn't exist."""

    def __init__(self, reference: UUID | str) -> None:
        self.reference = reference
        super().__init__(f"User not found: {reference}")


# ============================================================================
# Persistence Errors
# ============================================================================


class PersistenceError(StudioError):
    """Raised when a create/update/delete cannot be written."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Persistence failed: {message}")


class DuplicateUserError(StudioError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"User already exists: {email}")


# ============================================================================
# Media Store Errors
# ============================================================================


class AssetStoreError(StudioError):
    """Base class for media host failures."""

    def __init__(self, identifier: str, kind: AssetKind, message: str) -> None:
        self.identifier = identifier
        self.kind = kind
        self.message = message
        super().__init__(f"{message}: {kind.value}/{identifier}")


class AssetNotFoundError(AssetStoreError):
    """Raised when the media host has no asset under the identifier."""

    def __init__(self, identifier: str, kind: AssetKind) -> None:
        super().__init__(identifier, kind, "Asset not found")


class AssetStoreUnavailableError(AssetStoreError):
    """Raised when the media host can't be reached or rejects the request."""

    def __init__(self, identifier: str, kind: AssetKind, reason: str) -> None:
        self.reason = reason
        super().__init__(identifier, kind, f"Asset store unavailable ({reason})")


# ============================================================================
# Enrollment and Checkout Errors
# ============================================================================


class DuplicateEnrollmentError(StudioError):
    """Raised on the interactive enroll path when access is already held."""

    def __init__(self, user_id: UUID, kind: ItemKind, item_id: UUID) -> None:
        self.user_id = user_id
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"User {user_id} already enrolled in {kind.value} {item_id}")


class PaymentRequiredError(StudioError):
    """Raised when a paid item is enrolled without going through checkout."""

    def __init__(self, kind: ItemKind, item_id: UUID) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind.value.capitalize()} {item_id} requires payment")


class ItemNotPaidError(StudioError):
    """Raised when checkout is requested for a free item."""

    def __init__(self, kind: ItemKind, item_id: UUID) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind.value.capitalize()} {item_id} is free")


class PaymentNotConfiguredError(StudioError):
    """Raised when a paid item has no processor product configured."""

    def __init__(self, kind: ItemKind, item_id: UUID) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"Payment not configured for {kind.value} {item_id}")


# ============================================================================
# Auth Errors
# ============================================================================


class AuthenticationError(StudioError):
    """Raised when credentials or tokens are invalid."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Authentication failed: {reason}")

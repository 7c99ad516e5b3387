# storefront/domain/errors.py
"""Error taxonomy for the storefront service.

Every error carries the HTTP status the API layer answers with.
"""


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StoreError):
    """Malformed or missing input."""

    status_code = 400


class AuthError(StoreError):
    """Missing or invalid identity."""

    status_code = 401


class ForbiddenError(StoreError):
    """Identity is known but not allowed to touch the resource."""

    status_code = 403


class NotFoundError(StoreError):
    """Referenced entity does not exist."""

    status_code = 404


class ConflictError(StoreError):
    """A concurrent request modified the same document first."""

    status_code = 409


class InsufficientStockError(StoreError):
    """Requested quantity exceeds current stock."""

    status_code = 400

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough stock for product: {product_name} "
            f"(requested {requested}, available {available})"
        )


class AlreadyFinalizedError(StoreError):
    """Checkout session was already turned into an order."""

    status_code = 400

    def __init__(self, checkout_id: int):
        self.checkout_id = checkout_id
        super().__init__("Checkout already finalized")


class InvalidStateError(StoreError):
    """Transition not allowed from the current state."""

    status_code = 400


class InvalidSignatureError(StoreError):
    """Gateway payload signature does not match."""

    status_code = 400

    def __init__(self, message: str = "Checksum failed"):
        super().__init__(message)


class UpstreamError(StoreError):
    """Payment gateway unreachable or answered with something unusable."""

    status_code = 502

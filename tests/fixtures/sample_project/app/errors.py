class ValidationFailure(Exception):
    """Raised when an order is rejected."""

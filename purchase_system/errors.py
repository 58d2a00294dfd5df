# purchase_system/errors.py
"""
Exception hierarchy for the purchase engine.

Business-rule rejections are never raised: they come back as
PurchaseValidationResult.reasons. Everything below is for malformed input,
broken data or unreachable collaborators.
"""


class PurchaseSystemError(Exception):
    """Base class for all purchase engine errors."""
    pass


class ConfigurationError(PurchaseSystemError):
    """Configuration error exception."""
    pass


class ValidationError(PurchaseSystemError):
    """Malformed input (bad ids, bad amounts, bad level names)."""
    pass


class UnknownLevel(ValidationError):
    """Level name or value does not match any membership level."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown membership level: {value!r}")


class NotFoundError(PurchaseSystemError):
    """User or product is absent from the store."""

    def __init__(self, entity: str, entityId):
        self.entity = entity
        self.entityId = entityId
        super().__init__(f"{entity} {entityId} not found")


class HierarchyIntegrityError(PurchaseSystemError):
    """
    Cyclic parent pointers or a corrupted ancestor path.

    Fatal: callers must alert, never retry or absorb it.
    """

    def __init__(self, message: str, userId=None):
        self.userId = userId
        super().__init__(message)


# Short alias used by callers that think in terms of data integrity
IntegrityError = HierarchyIntegrityError


class InfrastructureTimeout(PurchaseSystemError):
    """Hierarchy store or catalog did not answer within the deadline."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout}s")


class CommissionCalculationFailed(PurchaseSystemError):
    """Commission could not be computed for an order."""

    def __init__(self, reason: str, orderId=None):
        self.reason = reason
        self.orderId = orderId
        super().__init__(f"Commission calculation failed for order {orderId}: {reason}")

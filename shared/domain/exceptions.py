"""
Domain Exceptions

Every error carries a stable `kind` and the HTTP-equivalent status the
transport layer maps it to.
"""


class DomainError(Exception):
    """Base domain exception"""
    kind = "DOMAIN_ERROR"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.kind
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class EntityNotFoundError(DomainError):
    """Raised when an entity is not found"""
    kind = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_name: str, entity_id: str):
        self.entity_name = entity_name
        self.entity_id = entity_id
        super().__init__(f"{entity_name} with ID {entity_id} not found")


class UnauthenticatedError(DomainError):
    """Raised when no valid actor is present"""
    kind = "UNAUTHENTICATED"
    status_code = 401


class UnauthorizedError(DomainError):
    """Raised when the actor lacks the role or ownership for an operation"""
    kind = "UNAUTHORIZED"
    status_code = 403


class SlotNotAvailableError(DomainError):
    """Raised when time slot is not available"""
    kind = "SLOT_UNAVAILABLE"
    status_code = 409


class InvalidTransitionError(DomainError):
    """Raised when a booking status change violates the lifecycle"""
    kind = "INVALID_TRANSITION"
    status_code = 409


class ValidationError(DomainError):
    """Raised when validation fails"""
    kind = "INVALID_INPUT"
    status_code = 400


InvalidInputError = ValidationError


class ConflictError(DomainError):
    """Raised when a compare-and-commit write loses to a concurrent writer"""
    kind = "CONFLICT"
    status_code = 409


class LockContentionError(DomainError):
    """Raised when the provider admission lock could not be acquired"""
    kind = "LOCK_CONTENTION"
    status_code = 409

    def __init__(self, provider_id: str, attempts: int):
        self.provider_id = provider_id
        self.attempts = attempts
        super().__init__(
            f"Could not acquire admission lock for provider {provider_id} "
            f"after {attempts} attempts"
        )

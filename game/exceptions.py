"""Errors raised by the pack and battle rules."""


class PackAttackError(Exception):
    """Base exception for all game errors."""
    code = "error"
    status_code = 400


class ConfigurationError(PackAttackError):
    """Raised when a box or its card pool cannot be opened."""
    code = "configuration_error"
    status_code = 422


class StateError(PackAttackError):
    """Raised when an operation is invalid for the entity's current state."""
    code = "invalid_state"
    status_code = 409


class CapacityError(PackAttackError):
    """Raised when a battle lobby is already full."""
    code = "lobby_full"
    status_code = 409

    def __init__(self, battle_id: int, max_participants: int):
        self.battle_id = battle_id
        self.max_participants = max_participants
        super().__init__(f"Battle {battle_id} is full ({max_participants} participants)")


class InsufficientFundsError(PackAttackError):
    """Raised when a user has too few coins for an operation."""
    code = "insufficient_funds"
    status_code = 402

    def __init__(self, user_id: int, required: int, available: int):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"User {user_id} has insufficient coins. Required: {required}, Available: {available}"
        )


class NotFoundError(PackAttackError):
    """Raised when a referenced entity does not exist."""
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class PermissionDeniedError(PackAttackError):
    code = "forbidden"
    status_code = 403


class TransientError(PackAttackError):
    """Raised when an external collaborator times out or is unavailable."""
    code = "transient_error"
    status_code = 503


class InvalidAmountError(PackAttackError):
    """Raised when a quantity or coin amount is out of range."""
    code = "invalid_amount"
    status_code = 422

# Custom exceptions for hivestore

class HiveStoreError(Exception):
    """Base exception for all application-specific errors."""
    pass

class SchemaInitError(HiveStoreError):
    """Raised when the schema file cannot be read or its DDL fails. Fatal at startup."""
    pass

class StatementError(HiveStoreError):
    """Raised when a cataloged statement fails inside the engine."""
    def __init__(self, op_key: str, message: str):
        self.op_key = op_key
        self.message = message
        super().__init__(f"Statement '{op_key}' failed: {message}")

class ConstraintViolationError(StatementError):
    """Raised on uniqueness, foreign-key or CHECK violations."""
    pass

class MalformedUpdateError(HiveStoreError, ValueError):
    """Raised when a partial update names no columns or unknown columns."""
    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"Invalid update on '{table}': {message}")

class InvalidTransitionError(HiveStoreError):
    """Raised when a status write would leave a terminal state."""
    def __init__(self, entity_id: str, current: str, requested: str):
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move '{entity_id}' from '{current}' to '{requested}'"
        )

class DuplicateVoteError(HiveStoreError):
    """Raised when an agent votes twice on the same proposal."""
    def __init__(self, proposal_id: str, agent_id: str):
        self.proposal_id = proposal_id
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' already voted on proposal '{proposal_id}'")

class ConfigError(HiveStoreError):
    """Raised for configuration-related problems."""
    pass

"""Error taxonomy shared by every service.

Callers branch on the class, never on the message text:
  - NotFoundError      — a referenced row is absent
  - InvalidInputError  — bad input, raised before anything is written
  - ConflictError      — the operation would break a state rule
  - CapabilityError    — an external capability (LLM, channel) failed
  - NoHandlerError     — an action type nobody registered
  - LedgerError        — credit deduction failed
  - ProcessingError    — the message pipeline failed before persisting
"""


class EngageError(Exception):
    """Base class for all domain errors."""


class NotFoundError(EngageError):
    def __init__(self, entity: str, entity_id, message: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity} {entity_id} not found")


class InvalidInputError(EngageError):
    def __init__(self, message: str, errors: dict | None = None):
        self.errors = errors or {}
        super().__init__(message)


class InvalidActionParamsError(InvalidInputError):
    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"Invalid params for action: {action_type}")


class ConflictError(EngageError):
    pass


class CapabilityError(EngageError):
    pass


class NoHandlerError(EngageError):
    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"No handler registered for action: {action_type}")


class LedgerError(EngageError):
    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)


class ProcessingError(EngageError):
    """Fatal pipeline failure; `step` names the stage that broke."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"Message processing failed at {step}: {cause}")

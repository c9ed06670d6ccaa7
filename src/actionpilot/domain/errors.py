"""Domain errors."""

from typing import List, Optional, Tuple


class ActionPilotError(Exception):
    """Base error."""
    pass


class RunStateError(ActionPilotError):
    """Illegal run or step status transition."""
    pass


class DuplicateStepError(ActionPilotError):
    """Two planned steps share the same step id."""
    pass


class ToolNotFoundError(ActionPilotError):
    """Tool is not registered."""
    pass


class ToolValidationError(ActionPilotError):
    """Tool arguments do not satisfy the registered schema."""

    def __init__(self, message: str, errors: Optional[List[Tuple[str, str]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])


class CompletionError(ActionPilotError):
    """Model-assisted completion returned nothing usable."""
    pass


class ArgumentRepairError(ActionPilotError):
    """Model-assisted argument repair failed."""
    pass

"""Custom exceptions for the StageFlow pipeline engine."""


class StageFlowException(Exception):
    """Base exception for StageFlow."""

    pass


class ValidationError(StageFlowException):
    """Raised when validation fails."""

    pass


class NotFoundError(StageFlowException):
    """Raised when a resource is not found."""

    pass


class DatabaseError(StageFlowException):
    """Raised when a database operation fails."""

    pass


class ConfigurationError(StageFlowException):
    """Raised when configuration is invalid."""

    pass


class UnknownTemplateError(StageFlowException):
    """Raised when a pipeline template id is not in the template registry."""

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Invalid template: {template_id}")
        self.template_id = template_id


class MissingIdentifierError(StageFlowException):
    """Raised when a recovery operation is called without its required identifiers."""

    pass


class InvalidTransitionError(ValidationError):
    """Raised when a disallowed status transition is attempted."""


class WorkerPoolError(StageFlowException):
    """Raised when the worker pool cannot accept work."""

    pass


class UnknownTaskTypeError(WorkerPoolError):
    """Raised when a task type has no registered executor."""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"Unknown task type: {task_type}")
        self.task_type = task_type


class TaskExecutionError(WorkerPoolError):
    """Raised through a task handle when the task failed inside an execution unit."""

    def __init__(self, task_id: str, task_type: str, message: str) -> None:
        super().__init__(f"Task {task_id} ({task_type}) failed: {message}")
        self.task_id = task_id
        self.task_type = task_type

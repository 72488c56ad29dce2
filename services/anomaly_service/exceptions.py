# exceptions.py - Error types raised inside the anomaly service


class AnomalyServiceError(Exception):
    """Base class for anomaly service errors."""


class RecordNotFoundError(AnomalyServiceError):
    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record {record_id} not found")
        self.collection = collection
        self.record_id = record_id


class WorkflowNotActiveError(AnomalyServiceError):
    """Raised when a non-active workflow definition is triggered."""


class SourceFetchError(AnomalyServiceError):
    def __init__(self, source_name: str, message: str):
        super().__init__(f"{source_name}: {message}")
        self.source_name = source_name


class StepTimeoutError(AnomalyServiceError):
    def __init__(self, step_name: str, timeout: float):
        super().__init__(f"Step {step_name} timed out after {timeout} seconds")
        self.step_name = step_name
        self.timeout = timeout


class DuplicateRecordError(AnomalyServiceError):
    """Raised when a unique field (such as a workflow name) is already taken."""

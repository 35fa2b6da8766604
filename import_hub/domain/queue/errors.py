class QueueError(Exception):
    """Base exception for the job queue."""
    pass


class QueueTaskNotFoundError(QueueError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Queue task '{task_id}' not found")


class UnknownTaskTypeError(QueueError):
    def __init__(self, task_type: str):
        self.task_type = task_type
        super().__init__(f"No processor registered for task type '{task_type}'")

class WorkflowError(Exception):
    """Base class for workflow lifecycle failures."""


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class IllegalTransitionError(WorkflowError):
    def __init__(self, workflow_id: str, status: str, message: str):
        super().__init__(f"Workflow {workflow_id} is {status}: {message}")
        self.workflow_id = workflow_id
        self.status = status


class WorkflowConflictError(WorkflowError):
    """Another writer changed the workflow between read and write."""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} was modified concurrently; retry the operation")
        self.workflow_id = workflow_id

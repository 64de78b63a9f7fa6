"""Domain models: plain dataclasses, no persistence."""

from proposal_workflow.models.event import EventType, WorkflowComment, WorkflowEvent  # noqa: F401
from proposal_workflow.models.notification import (  # noqa: F401
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
    WorkflowNotification,
)
from proposal_workflow.models.proposal import (  # noqa: F401
    DEFAULT_WORKFLOW_ID,
    TERMINAL_STATUSES,
    Priority,
    Proposal,
    ProposalStatus,
    User,
    UserRole,
)
from proposal_workflow.models.result import TransitionResult  # noqa: F401
from proposal_workflow.models.workflow import (  # noqa: F401
    ActionType,
    ConditionOperator,
    PermissionAction,
    StepStatus,
    TransitionTrigger,
    WorkflowAction,
    WorkflowCondition,
    WorkflowConfiguration,
    WorkflowStep,
    WorkflowTransition,
    default_workflow,
    with_cancellation,
)

"""Per-kind parameter schemas for action nodes.


Each :class:`~litestar_automations.core.types.ActionKind` owns a pydantic
model describing its parameters. Action nodes are validated against these
models when a graph is compiled, so a running instance never carries a
malformed payload.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from litestar_automations.core.types import ActionKind

__all__ = [
    "ACTION_PARAM_MODELS",
    "IDEMPOTENT_UNSAFE_KINDS",
    "ActionParams",
    "AddTagParams",
    "AssignUserParams",
    "CreateTaskParams",
    "MoveStageParams",
    "RemoveTagParams",
    "SendEmailParams",
    "SendNotificationParams",
    "SendWhatsappParams",
    "WebhookParams",
    "is_idempotent_safe",
    "validate_params",
]


class ActionParams(BaseModel):
    """Base class for action parameter models.

    Unknown keys are kept so editors can store presentation data alongside
    the parameters the handler consumes.
    """

    model_config = ConfigDict(extra="allow", frozen=True)


def _not_blank(value: str) -> str:
    if not value or not value.strip():
        msg = "must not be empty"
        raise ValueError(msg)
    return value.strip()


NonBlankStr = Annotated[str, AfterValidator(_not_blank)]


class SendWhatsappParams(ActionParams):
    """Send a WhatsApp message, either from a template or as free text."""

    template: str | None = Field(None, description="Template name or id")
    message: str | None = Field(None, description="Free text message body")
    session_id: str | None = Field(None, description="Sending session; defaults to the event's session")

    @model_validator(mode="after")
    def require_content(self) -> SendWhatsappParams:
        """Ensure there is something to send."""
        if not (self.template or self.message):
            msg = "either 'template' or 'message' is required"
            raise ValueError(msg)
        return self


class SendEmailParams(ActionParams):
    subject: NonBlankStr = Field(..., description="Email subject")
    body: str = Field(..., description="Email body")
    to: str | None = Field(None, description="Recipient; defaults to the lead's email")


class MoveStageParams(ActionParams):
    target_stage_id: NonBlankStr = Field(..., description="Pipeline stage to move the lead to")


class AddTagParams(ActionParams):
    tag_id: NonBlankStr = Field(..., description="Tag to add to the lead")


class RemoveTagParams(ActionParams):
    tag_id: NonBlankStr = Field(..., description="Tag to remove from the lead")


class AssignUserParams(ActionParams):
    user_id: NonBlankStr = Field(..., description="User who becomes responsible for the lead")


class CreateTaskParams(ActionParams):
    """Create a follow-up task for the lead."""

    task_title: NonBlankStr = Field(..., description="Task title")
    task_description: str | None = Field(None, description="Task description")
    task_type: str = Field("task", description="Task category")
    due_days: int | None = Field(None, ge=0, description="Days from now until the task is due")


class SendNotificationParams(ActionParams):
    user_id: NonBlankStr = Field(..., description="User to notify")
    title: NonBlankStr = Field(..., description="Notification title")
    content: str | None = Field(None, description="Notification body")


class WebhookParams(ActionParams):
    """Call an external HTTP endpoint."""

    webhook_url: str = Field(..., description="Endpoint to call")
    method: Literal["GET", "POST", "PUT"] = Field("POST", description="HTTP method")
    payload: dict[str, Any] | None = Field(None, description="JSON body; defaults to the event context")

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, method: Any) -> Any:
        return method.upper() if isinstance(method, str) else method

    @field_validator("webhook_url")
    @classmethod
    def validate_url(cls, url: str) -> str:
        """Accept only http(s) URLs; templated URLs are checked after rendering."""
        url = _not_blank(url)
        if not (url.startswith(("http://", "https://")) or url.startswith("{{")):
            msg = "webhook_url must be an http(s) URL"
            raise ValueError(msg)
        return url


ACTION_PARAM_MODELS: dict[ActionKind, type[ActionParams]] = {
    ActionKind.SEND_WHATSAPP: SendWhatsappParams,
    ActionKind.SEND_EMAIL: SendEmailParams,
    ActionKind.MOVE_STAGE: MoveStageParams,
    ActionKind.ADD_TAG: AddTagParams,
    ActionKind.REMOVE_TAG: RemoveTagParams,
    ActionKind.ASSIGN_USER: AssignUserParams,
    ActionKind.CREATE_TASK: CreateTaskParams,
    ActionKind.SEND_NOTIFICATION: SendNotificationParams,
    ActionKind.WEBHOOK: WebhookParams,
}
"""Parameter model for every action kind."""


IDEMPOTENT_UNSAFE_KINDS: frozenset[ActionKind] = frozenset(
    {
        ActionKind.SEND_WHATSAPP,
        ActionKind.SEND_EMAIL,
        ActionKind.SEND_NOTIFICATION,
        ActionKind.CREATE_TASK,
        ActionKind.WEBHOOK,
    }
)
"""Kinds whose side effect must not be repeated when its outcome is unknown."""


def is_idempotent_safe(kind: ActionKind) -> bool:
    """Whether an action of this kind may be re-invoked after a crash.

    Example:
        >>> is_idempotent_safe(ActionKind.ADD_TAG)
        True
        >>> is_idempotent_safe(ActionKind.SEND_EMAIL)
        False
    """
    return kind not in IDEMPOTENT_UNSAFE_KINDS


def validate_params(kind: ActionKind, params: dict[str, Any]) -> ActionParams:
    """Validate raw parameters against the kind's schema.

    Args:
        kind: The action kind.
        params: Raw parameters as authored.

    Returns:
        The validated parameter model.

    Raises:
        ValueError: If the parameters do not satisfy the schema. The message
            lists every failing field.
    """
    model = ACTION_PARAM_MODELS[kind]
    try:
        return model.model_validate(params)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}" for err in e.errors()
        )
        msg = f"Invalid parameters for action '{kind}': {problems}"
        raise ValueError(msg) from e

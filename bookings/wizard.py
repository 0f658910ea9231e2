"""
Multi-step booking wizard.

One immutable WizardState is transformed by reducer functions. The state is
plain data so it can be stored between requests; the step validators live in
the FLOWS registry and are looked up by flow name and step index.

Forward progress is monotonic: a step is completed only by passing its own
validator, and navigation can never land ahead of the current step. Going
back is always free and keeps completion marks until the step fails
validation again.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bookings.errors import InvalidInput, InvalidTransition
from bookings.money import PaymentChannel
from bookings.schemas import BookingSelections

Errors = dict[str, str]
Validator = Callable[[BookingSelections], Errors]


class StepStatus(StrEnum):
    PENDING = "pending"
    CURRENT = "current"
    COMPLETED = "completed"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Validators: pure predicates over the accumulated selections
# ---------------------------------------------------------------------------


def validate_activity(s: BookingSelections) -> Errors:
    if s.activity_id is None:
        return {"activity_id": "Please select an activity"}
    return {}


def validate_child(s: BookingSelections) -> Errors:
    if s.child_id is None:
        return {"child_id": "Please select a child to continue"}
    return {}


def validate_schedule(s: BookingSelections) -> Errors:
    errors: Errors = {}
    if s.activity_date is None:
        errors["activity_date"] = "Please choose a date"
    if s.start_time is None:
        errors["start_time"] = "Please choose a time"
    elif s.end_time is not None and s.end_time <= s.start_time:
        errors["end_time"] = "End time must be after start time"
    return errors


def validate_details(s: BookingSelections) -> Errors:
    return {**validate_child(s), **validate_schedule(s)}


def validate_widget_details(s: BookingSelections) -> Errors:
    return {**validate_activity(s), **validate_details(s)}


def validate_payment(s: BookingSelections) -> Errors:
    errors: Errors = {}
    if s.payment_channel is None:
        errors["payment_channel"] = "Please choose a payment method"
    elif s.payment_channel == PaymentChannel.MIXED and s.card_amount is None:
        errors["card_amount"] = "Please enter the amount paid by card"
    if not s.payment_confirmed:
        errors["payment_confirmed"] = "Please confirm the payment"
    return errors


@dataclass(frozen=True)
class StepDefinition:
    key: str
    title: str
    validate: Validator


FLOWS: dict[str, tuple[StepDefinition, ...]] = {
    "parent": (
        StepDefinition("activity", "Choose activity", validate_activity),
        StepDefinition("details", "Child & schedule", validate_details),
        StepDefinition("payment", "Payment", validate_payment),
    ),
    "mobile": (
        StepDefinition("activity", "Activity", validate_activity),
        StepDefinition("child", "Child", validate_child),
        StepDefinition("schedule", "Date & time", validate_schedule),
        StepDefinition("payment", "Payment", validate_payment),
    ),
    # The embeddable widget is opened from an activity, so it starts at details.
    "widget": (
        StepDefinition("details", "Your booking", validate_widget_details),
        StepDefinition("payment", "Payment", validate_payment),
    ),
}


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class WizardStep(BaseModel):
    key: str
    title: str
    status: StepStatus = StepStatus.PENDING
    validated: bool = False  # completion mark, survives backward navigation

    model_config = ConfigDict(frozen=True)


class WizardState(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    flow: str
    owner_id: UUID | None = None
    steps: tuple[WizardStep, ...]
    current_step_index: int = 0
    errors: Errors = Field(default_factory=dict)
    selections: BookingSelections = Field(default_factory=BookingSelections)
    submitted: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def current_step(self) -> WizardStep:
        return self.steps[self.current_step_index]

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == len(self.steps) - 1


def _definitions(flow: str) -> tuple[StepDefinition, ...]:
    try:
        return FLOWS[flow]
    except KeyError:
        raise InvalidInput(f"Unknown booking flow: {flow!r}", flow=flow) from None


def _replace_step(steps: tuple[WizardStep, ...], index: int, **changes: Any) -> tuple[WizardStep, ...]:
    return tuple(
        step.model_copy(update=changes) if i == index else step for i, step in enumerate(steps)
    )


def _left_status(step: WizardStep) -> StepStatus:
    return StepStatus.COMPLETED if step.validated else StepStatus.PENDING


def _ensure_open(state: WizardState) -> None:
    if state.submitted:
        raise InvalidTransition("This booking has already been submitted", wizard_id=str(state.id))


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------


def start(
    flow: str,
    selections: Mapping[str, Any] | None = None,
    owner_id: UUID | None = None,
) -> WizardState:
    """New wizard on its first step, optionally with preselected answers."""
    steps = tuple(WizardStep(key=d.key, title=d.title) for d in _definitions(flow))
    steps = _replace_step(steps, 0, status=StepStatus.CURRENT)
    state = WizardState(flow=flow, owner_id=owner_id, steps=steps)
    return update(state, selections) if selections else state


def update(state: WizardState, changes: Mapping[str, Any]) -> WizardState:
    """Merge new answers into the selections. Existing answers are kept."""
    _ensure_open(state)
    merged = {**state.selections.model_dump(), **changes}
    try:
        selections = BookingSelections.model_validate(merged)
    except ValidationError as exc:
        raise InvalidInput("Invalid booking selections", errors=exc.errors(include_url=False)) from None
    errors = {k: v for k, v in state.errors.items() if k not in changes}
    return state.model_copy(update={"selections": selections, "errors": errors})


def _validate_current(state: WizardState) -> Errors:
    definition = _definitions(state.flow)[state.current_step_index]
    return definition.validate(state.selections)


def go_next(state: WizardState) -> WizardState:
    """
    Validate the active step and advance on success.

    On failure the index does not move, the step is flagged with an error
    and loses any earlier completion mark.
    """
    _ensure_open(state)
    index = state.current_step_index
    if state.is_last_step:
        raise InvalidTransition("Already on the last step; submit instead", wizard_id=str(state.id))

    errors = _validate_current(state)
    if errors:
        steps = _replace_step(state.steps, index, status=StepStatus.ERROR, validated=False)
        return state.model_copy(update={"steps": steps, "errors": errors})

    steps = _replace_step(state.steps, index, status=StepStatus.COMPLETED, validated=True)
    steps = _replace_step(steps, index + 1, status=StepStatus.CURRENT)
    return state.model_copy(
        update={"steps": steps, "current_step_index": index + 1, "errors": {}}
    )


def jump_to(state: WizardState, index: int) -> WizardState:
    """Move back to any step at or before the current one, without validating."""
    _ensure_open(state)
    current = state.current_step_index
    if not 0 <= index <= current:
        raise InvalidTransition(
            f"Cannot jump to step {index}; only steps 0..{current} are reachable",
            wizard_id=str(state.id),
        )
    if index == current:
        return state
    steps = _replace_step(state.steps, current, status=_left_status(state.current_step))
    steps = _replace_step(steps, index, status=StepStatus.CURRENT)
    return state.model_copy(update={"steps": steps, "current_step_index": index, "errors": {}})


def go_previous(state: WizardState) -> WizardState:
    if state.current_step_index == 0:
        raise InvalidTransition("Already on the first step", wizard_id=str(state.id))
    return jump_to(state, state.current_step_index - 1)


def submit(state: WizardState) -> WizardState:
    """
    Validate the answers and mark the wizard as submitted.

    Returns the state with errors (and submitted=False) when anything does
    not validate. Creating the booking is left to the caller, who keeps
    the pre-submit state if that fails.
    """
    _ensure_open(state)
    if not state.is_last_step:
        raise InvalidTransition("Submit is only possible from the last step", wizard_id=str(state.id))

    # Earlier answers may have been edited since their step was completed.
    errors: Errors = {}
    for definition in _definitions(state.flow):
        errors.update(definition.validate(state.selections))
    if errors:
        steps = state.steps
        if _validate_current(state):
            steps = _replace_step(
                steps, state.current_step_index, status=StepStatus.ERROR, validated=False
            )
        return state.model_copy(update={"steps": steps, "errors": errors})

    steps = _replace_step(
        state.steps, state.current_step_index, status=StepStatus.COMPLETED, validated=True
    )
    return state.model_copy(update={"steps": steps, "errors": {}, "submitted": True})


def submission(state: WizardState) -> BookingSelections:
    """The answers of a submitted wizard, ready to be turned into a booking."""
    if not state.submitted:
        raise InvalidTransition("Wizard has not been submitted", wizard_id=str(state.id))
    return state.selections

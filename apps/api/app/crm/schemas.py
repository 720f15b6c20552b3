from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


HumanStatus = Literal["open", "active", "closed"]
HumanTypeValue = Literal["client", "trainer", "travel_agent", "flight_broker"]
AccountStatus = Literal["open", "active", "closed"]
ActivityType = Literal["email", "whatsapp_message", "online_meeting", "phone_call", "social_message"]
OpportunityStage = Literal[
    "open",
    "qualified",
    "deposit_request_sent",
    "deposit_received",
    "group_forming",
    "confirmed_to_operate",
    "paid",
    "docs_in_progress",
    "docs_complete",
    "closed_flown",
    "closed_lost",
]
OpportunityRoleName = Literal["primary", "passenger"]


class HumanCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=200)
    middle_name: str | None = Field(default=None, max_length=200)
    last_name: str = Field(min_length=1, max_length=200)
    status: HumanStatus = "open"
    types: list[HumanTypeValue] = Field(default_factory=list)


class HumanUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=200)
    middle_name: str | None = Field(default=None, max_length=200)
    last_name: str | None = Field(default=None, min_length=1, max_length=200)
    status: HumanStatus | None = None
    types: list[HumanTypeValue] | None = None


class HumanStatusUpdate(BaseModel):
    status: HumanStatus


class HumanRead(BaseModel):
    id: UUID
    display_id: str
    first_name: str
    middle_name: str | None
    last_name: str
    status: str
    types: list[str]
    created_at: datetime
    updated_at: datetime


class HumanMutationResult(BaseModel):
    data: HumanRead
    audit_entry_id: str | None = None


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    status: AccountStatus = "open"
    type_ids: list[str] = Field(default_factory=list)


class AccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    status: AccountStatus | None = None
    type_ids: list[str] | None = None


class AccountStatusUpdate(BaseModel):
    status: AccountStatus


class AccountRead(BaseModel):
    id: UUID
    display_id: str
    name: str
    status: str
    type_ids: list[str]
    created_at: datetime
    updated_at: datetime


class AccountMutationResult(BaseModel):
    data: AccountRead
    audit_entry_id: str | None = None


class NextActionInput(BaseModel):
    owner_id: str | None = Field(default=None, min_length=1)
    description: str = Field(min_length=1, max_length=1000)
    type: ActivityType = "email"
    start_date: date | None = None
    due_date: date


class OpportunityCreate(BaseModel):
    stage: OpportunityStage = "open"
    seats_requested: int = Field(default=1, ge=1)
    passenger_seats: int = Field(default=1, ge=0)
    pet_seats: int = Field(default=0, ge=0)
    notes: str | None = Field(default=None, max_length=10000)
    loss_reason: str | None = Field(default=None, max_length=2000)


class OpportunityUpdate(BaseModel):
    seats_requested: int | None = Field(default=None, ge=1)
    passenger_seats: int | None = Field(default=None, ge=0)
    pet_seats: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=10000)
    loss_reason: str | None = Field(default=None, max_length=2000)
    flight_id: str | None = None


class OpportunityStageUpdate(BaseModel):
    stage: OpportunityStage
    loss_reason: str | None = Field(default=None, max_length=2000)
    next_action: NextActionInput | None = None

    @model_validator(mode="after")
    def _next_action_only_for_open_stages(self) -> "OpportunityStageUpdate":
        if self.next_action is not None and self.stage in {"closed_flown", "closed_lost"}:
            raise ValueError("next_action cannot be set when closing an opportunity")
        return self


class OpportunityHumanLinkCreate(BaseModel):
    human_id: UUID
    role: OpportunityRoleName | None = None


class OpportunityHumanLinkUpdate(BaseModel):
    role: OpportunityRoleName


class OpportunityHumanLinkRead(BaseModel):
    id: UUID
    opportunity_id: UUID
    human_id: UUID
    role_id: UUID | None
    role_name: str | None
    human_display_id: str | None = None
    human_name: str | None = None
    created_at: datetime


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_id: str
    type: str
    subject: str
    body: str | None
    notes: str | None
    activity_date: datetime
    opportunity_id: UUID | None
    created_by_colleague_id: str | None
    created_at: datetime


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_id: str
    stage: str
    seats_requested: int
    passenger_seats: int
    pet_seats: int
    notes: str | None
    loss_reason: str | None
    flight_id: str | None
    next_action_owner_id: str | None
    next_action_description: str | None
    next_action_type: str | None
    next_action_start_date: str | None
    next_action_due_date: str | None
    next_action_completed_at: datetime | None
    is_overdue: bool = False
    created_at: datetime
    updated_at: datetime


class OpportunityDetail(OpportunityRead):
    linked_humans: list[OpportunityHumanLinkRead] = Field(default_factory=list)
    activities: list[ActivityRead] = Field(default_factory=list)


class OpportunityMutationResult(BaseModel):
    data: OpportunityRead
    audit_entry_id: str | None = None


class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str
    changes: dict[str, Any] | None
    correlation_id: str | None
    created_at: datetime


class UndoResponse(BaseModel):
    undo_entry_id: str

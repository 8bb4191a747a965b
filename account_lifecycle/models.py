"""
Core data models for the Account Lifecycle Engine.

This module defines the Pydantic models used throughout the system for
user records, group memberships, workflow payloads, step results,
execution tracking and the request/response contracts of the entry points.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Tier(str, Enum):
    """Paid/unpaid classification of a user account."""
    USER = "user"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def can_advance_to(self, target: "Tier") -> bool:
        """Tiers only move forward (user -> paid), never back."""
        return target.rank >= self.rank


_TIER_ORDER = [Tier.USER, Tier.PAID]


class Group(str, Enum):
    """Named directory groups an identity can belong to."""
    ADMIN = "admin"
    PAID = "paid"
    USER = "user"

    @property
    def precedence(self) -> int:
        """Lower value wins when an identity belongs to several groups."""
        return GROUP_PRECEDENCE[self]


GROUP_PRECEDENCE: Dict[Group, int] = {
    Group.ADMIN: 1,
    Group.PAID: 2,
    Group.USER: 3,
}


class ErrorKind(str, Enum):
    """Failure classes a step or entry point can report."""
    UNAUTHORIZED = "UNAUTHORIZED"
    CONFIGURATION = "CONFIGURATION"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    TRANSIENT = "TRANSIENT"
    SOFT_FAILURE = "SOFT_FAILURE"
    TIMEOUT = "TIMEOUT"


class UserRecord(BaseModel):
    """Internal account entity, stored with camelCase attribute names."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", description="System generated sortable id")
    identity_id: str = Field(..., alias="cognitoUserId", description="External identity id")
    email: str
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    contact_number: str = Field("", alias="contactNumber")
    tier: Tier = Tier.USER
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    def to_item(self) -> Dict[str, Any]:
        """Serialize to the record store attribute layout."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "UserRecord":
        return cls.model_validate(item)


class GroupMembership(BaseModel):
    """Groups an identity currently belongs to."""
    identity_id: str
    groups: List[str] = Field(default_factory=list)

    @property
    def primary_group(self) -> Optional[Group]:
        known = [Group(g) for g in self.groups if g in {m.value for m in Group}]
        if not known:
            return None
        return min(known, key=lambda g: g.precedence)

    def __contains__(self, group: object) -> bool:
        value = group.value if isinstance(group, Group) else group
        return value in self.groups


class StepResult(BaseModel):
    """Outcome of a single step attempt. Never persisted."""
    success: bool
    output: Dict[str, Any] = Field(default_factory=dict)
    kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return not self.success and self.kind == ErrorKind.TRANSIENT

    @classmethod
    def ok(cls, **output: Any) -> "StepResult":
        return cls(success=True, output=output)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str) -> "StepResult":
        return cls(success=False, kind=kind, error=error)


class WorkflowPayload(BaseModel):
    """Base for the typed records accumulated along a workflow."""
    model_config = ConfigDict(extra="forbid")

    identity_id: str = Field(..., min_length=1, description="External identity id")


# Account creation payloads

class AccountCreationInput(WorkflowPayload):
    """Input of the account creation workflow."""
    email: str
    first_name: str = ""
    last_name: str = ""
    contact_number: str = ""

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Invalid email format")
        return v


class GeneratedAccount(AccountCreationInput):
    user_id: str
    created_at: datetime
    tier: Tier = Tier.USER


class ProvisionedAccount(GeneratedAccount):
    record_created: bool
    storage_key: str


class AccountCreationResult(ProvisionedAccount):
    delivered: bool


# Tier upgrade payloads

class TierUpgradeInput(WorkflowPayload):
    """Input of the tier upgrade workflow."""


class GroupRevoked(TierUpgradeInput):
    revoked_group: Optional[str] = None


class GroupGranted(GroupRevoked):
    updated_group: str


class TierAdvanced(GroupGranted):
    tier_updated: bool
    user_id: str


class TierUpgradeResult(TierAdvanced):
    delivered: bool


class ExecutionStatus(str, Enum):
    """Status of a workflow run."""
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


class StepOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    SOFT_FAILED = "soft_failed"
    FAILED = "failed"


class StepExecution(BaseModel):
    """Record of one step (all of its attempts) inside a run."""
    step: str
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    attempts: int = 0
    outcome: Optional[StepOutcome] = None
    kind: Optional[ErrorKind] = None
    error: Optional[str] = None


class ExecutionRecord(BaseModel):
    """Tracked state of a single workflow run."""
    execution_name: str
    execution_reference: str
    workflow_id: str
    identity_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    failed_step: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    steps: List[StepExecution] = Field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED


class AuditRecord(BaseModel):
    """Audit record for one step execution."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=utc_now)
    execution_name: str
    workflow_id: str
    identity_id: str
    step: str
    success: bool
    outcome: StepOutcome
    attempts: int = 1
    kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


class PostVerificationEvent(BaseModel):
    """Identity provider notification fired after a user verifies."""
    identity_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1, description="Provider username")
    email: str
    first_name: str = ""
    last_name: str = ""
    contact_number: str = ""
    raw_data: Optional[Dict[str, Any]] = Field(None, description="Original provider payload")

    @classmethod
    def from_provider_payload(cls, payload: Dict[str, Any]) -> "PostVerificationEvent":
        """Parse the provider's trigger shape (request.userAttributes...)."""
        attributes = payload.get("request", {}).get("userAttributes", {})
        return cls(
            identity_id=attributes.get("sub", ""),
            user_name=payload.get("userName") or attributes.get("sub", ""),
            email=attributes.get("email", ""),
            first_name=attributes.get("custom:firstName") or "",
            last_name=attributes.get("custom:lastName") or "",
            contact_number=attributes.get("custom:contactNumber") or "",
            raw_data=payload,
        )

    def to_workflow_input(self) -> AccountCreationInput:
        return AccountCreationInput(
            identity_id=self.identity_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            contact_number=self.contact_number,
        )


class UpgradeRequest(BaseModel):
    """Authenticated request to move a target identity to the paid tier."""
    target_identity_id: str = Field(..., min_length=1)
    requester_identity_id: str = Field(..., min_length=1)
    requester_groups: List[str] = Field(default_factory=list)
    wait: bool = Field(False, description="Wait for the workflow before responding")


class UpgradeResponse(BaseModel):
    success: bool
    message: str
    execution_reference: Optional[str] = None

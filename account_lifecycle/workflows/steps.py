"""
Concrete workflow steps.

Each step performs one idempotent operation against one external system
through its connector and maps the ConnectorResult onto a StepResult.
"""

import logging
from typing import Any, Dict, Optional, Union

from jinja2 import TemplateError
from pydantic import BaseModel
from ulid import ULID

from ..config import NotificationSettings
from ..connectors import IdentityDirectory, Notifier, ObjectStore, RecordStore
from ..models import (
    ErrorKind,
    GeneratedAccount,
    Group,
    GroupGranted,
    GroupRevoked,
    StepResult,
    Tier,
    TierAdvanced,
    UserRecord,
    utc_now,
)
from ..notifications import render_message
from .base_workflow import Step

logger = logging.getLogger(__name__)


def _group_name(group: Union[Group, str]) -> str:
    return group.value if isinstance(group, Group) else group


class GenerateIdentity(Step):
    """Mint the internal user id and stamp the creation time."""

    output_model = GeneratedAccount

    def execute(self, payload: BaseModel) -> StepResult:
        user_id = str(ULID())
        logger.info(f"Generated user id {user_id} for identity {payload.identity_id}")
        return StepResult.ok(user_id=user_id, created_at=utc_now(), tier=Tier.USER)


class PersistRecord(Step):
    """
    Create the user record.

    The write is conditional on the user id being free, so running it
    twice for the same generated id ends in a CONFLICT instead of
    overwriting the first record.
    """

    def __init__(self, records: RecordStore, name: Optional[str] = None):
        super().__init__(name)
        self.records = records

    def execute(self, payload: BaseModel) -> StepResult:
        record = UserRecord(
            user_id=payload.user_id,
            identity_id=payload.identity_id,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            contact_number=payload.contact_number,
            tier=payload.tier,
            created_at=payload.created_at,
        )
        result = self.records.put_if_absent(record)
        return self.from_connector(result, record_created=True)


class ProvisionStorage(Step):
    """Create the user's storage namespace keyed by user id."""

    def __init__(self, storage: ObjectStore, name: Optional[str] = None):
        super().__init__(name)
        self.storage = storage

    def execute(self, payload: BaseModel) -> StepResult:
        result = self.storage.ensure_namespace(payload.user_id)
        if not result.success:
            return self.from_connector(result)
        return StepResult.ok(storage_key=result.data["key"])


class GrantGroup(Step):
    """Add the identity to a group. Adding an existing member succeeds."""

    output_model = GroupGranted

    def __init__(self, directory: IdentityDirectory, group: Union[Group, str],
                 name: Optional[str] = None):
        super().__init__(name)
        self.directory = directory
        self.group = _group_name(group)

    def execute(self, payload: BaseModel) -> StepResult:
        result = self.directory.add_to_group(payload.identity_id, self.group)
        return self.from_connector(result, updated_group=self.group)


class RevokeGroup(Step):
    """
    Remove the identity from a group.

    Not being a member is a successful outcome with revoked_group unset.
    Best effort: a failure is recorded but the workflow continues.
    """

    best_effort = True
    output_model = GroupRevoked

    def __init__(self, directory: IdentityDirectory, group: Union[Group, str],
                 name: Optional[str] = None):
        super().__init__(name)
        self.directory = directory
        self.group = _group_name(group)

    def execute(self, payload: BaseModel) -> StepResult:
        result = self.directory.remove_from_group(payload.identity_id, self.group)
        if not result.success:
            return self.from_connector(result)
        removed = bool(result.data and result.data.get("removed"))
        return StepResult.ok(revoked_group=self.group if removed else None)

    def fallback_output(self, payload: BaseModel) -> Dict[str, Any]:
        return {"revoked_group": None}


class AdvanceTier(Step):
    """
    Look up the identity's record and set its tier.

    The write is an unconditional set to the target tier, so repeating it
    leaves the record unchanged apart from updatedAt. Downgrades are refused.
    """

    output_model = TierAdvanced

    def __init__(self, records: RecordStore, target: Tier = Tier.PAID,
                 name: Optional[str] = None):
        super().__init__(name)
        self.records = records
        self.target = target

    def execute(self, payload: BaseModel) -> StepResult:
        found = self.records.find_by_identity(payload.identity_id)
        if not found.success:
            return self.from_connector(found)

        record: UserRecord = found.data
        if not record.tier.can_advance_to(self.target):
            error_msg = (f"Refusing to move {record.user_id} from tier "
                         f"{record.tier.value} to {self.target.value}")
            logger.error(error_msg)
            return StepResult.failure(ErrorKind.INVALID_INPUT, error_msg)

        result = self.records.set_tier(record.user_id, self.target, utc_now())
        return self.from_connector(result, tier_updated=True, user_id=record.user_id)


class NotifyUser(Step):
    """
    Render a templated email and send it to the user.

    Uses the email on the payload when present, otherwise the one on the
    stored record. Best effort: delivery failure only clears the
    delivered flag.
    """

    best_effort = True

    def __init__(self, notifier: Notifier, template: str,
                 settings: Optional[NotificationSettings] = None,
                 records: Optional[RecordStore] = None,
                 output_model: Optional[type] = None, name: Optional[str] = None):
        super().__init__(name, output_model)
        self.notifier = notifier
        self.template = template
        self.settings = settings or NotificationSettings()
        self.records = records

    def execute(self, payload: BaseModel) -> StepResult:
        fields = payload.model_dump()
        if not fields.get("email"):
            if self.records is None or not fields.get("user_id"):
                return StepResult.failure(ErrorKind.INVALID_INPUT,
                                          "No email address available for notification")
            found = self.records.get(fields["user_id"])
            if not found.success:
                return self.from_connector(found)
            fields = {**found.data.model_dump(), **fields}

        try:
            message = render_message(self.template, self._context(fields))
        except TemplateError as e:
            logger.error(f"Failed to render {self.template} template: {e}")
            return StepResult.failure(ErrorKind.INVALID_INPUT, f"Template error: {e}")

        result = self.notifier.send(fields["email"], message)
        return self.from_connector(result, delivered=True)

    def fallback_output(self, payload: BaseModel) -> Dict[str, Any]:
        return {"delivered": False}

    def _context(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        first_name = fields.get("first_name") or ""
        last_name = fields.get("last_name") or ""
        name = f"{first_name} {last_name}".strip() or fields["email"]
        tier = fields.get("tier")
        created_at = fields.get("created_at")
        return {
            "name": name,
            "product_name": self.settings.product_name,
            "email": fields["email"],
            "contact_number": fields.get("contact_number") or "",
            "user_id": fields.get("user_id", ""),
            "tier": tier.value if isinstance(tier, Tier) else (tier or ""),
            "created_at": created_at.isoformat() if hasattr(created_at, "isoformat")
            else (created_at or ""),
        }


__all__ = [
    "GenerateIdentity",
    "PersistRecord",
    "ProvisionStorage",
    "GrantGroup",
    "RevokeGroup",
    "AdvanceTier",
    "NotifyUser",
]

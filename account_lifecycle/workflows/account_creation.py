"""
Account Creation Workflow.

Runs after a user verifies with the identity provider:

    GenerateIdentity -> Join(PersistRecord, ProvisionStorage) -> NotifyUser

The record and the storage namespace are independent, so they are
created in parallel. The welcome email is best effort.
"""

from typing import Optional

from ..config import LifecycleSettings
from ..connectors import Connectors
from ..models import AccountCreationInput, AccountCreationResult, ProvisionedAccount
from ..notifications import WELCOME
from .base_workflow import Join, WorkflowDefinition
from .steps import GenerateIdentity, NotifyUser, PersistRecord, ProvisionStorage

ACCOUNT_CREATION = "account-creation"
ACCOUNT_CREATION_PREFIX = "user-creation"


def build_account_creation(connectors: Connectors,
                           settings: Optional[LifecycleSettings] = None) -> WorkflowDefinition:
    """
    Build the account creation workflow definition.

    Args:
        connectors: Connectors the steps act through
        settings: Engine settings (notification settings are used)

    Returns:
        WorkflowDefinition with id "account-creation"
    """
    settings = settings or LifecycleSettings()

    return WorkflowDefinition(
        workflow_id=ACCOUNT_CREATION,
        input_model=AccountCreationInput,
        name_prefix=ACCOUNT_CREATION_PREFIX,
        description="Create the user record, storage namespace and send a welcome email",
        nodes=[
            GenerateIdentity(),
            Join(
                [PersistRecord(connectors.records), ProvisionStorage(connectors.storage)],
                output_model=ProvisionedAccount,
                name="CreateAccountResources",
            ),
            NotifyUser(
                connectors.notifier,
                WELCOME,
                settings=settings.notifications,
                output_model=AccountCreationResult,
                name="SendWelcomeEmail",
            ),
        ],
    )

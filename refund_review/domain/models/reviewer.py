"""Reviewer (authenticated principal) model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    WAREHOUSE_MANAGER = "warehouse-manager"
    REGIONAL_MANAGER = "regional-manager"
    OPERATIONS_MANAGER = "operations-manager"
    EXECUTIVE = "executive"


class Reviewer(BaseModel):
    """A reviewer as resolved from the identity provider and the reviewers table.

    Immutable for the lifetime of a request; role and assignment changes are
    made out-of-band and picked up on the next resolution.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    display_name: str | None = None
    role: Role
    assigned_warehouse_id: str | None = None
    assigned_region_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

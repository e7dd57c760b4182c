"""Scope resolution: which transactions and notifications a reviewer may read.

The same predicate filters both collections. Both carry ``warehouse_id``
and ``region_id`` under the same names, so a reviewer is never notified
about a transaction they cannot open.
"""

from collections.abc import Mapping
from typing import Any

from refund_review.core.errors import ScopeViolationError
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.predicates import Op, Predicate
from refund_review.domain.roles import Scope, capabilities_for

WAREHOUSE_FIELD = "warehouse_id"
REGION_FIELD = "region_id"


def resolve(reviewer: Reviewer) -> Predicate:
    """Turn a reviewer's role and assignment into a read predicate.

    A warehouse or regional manager without an assignment sees nothing.
    """
    scope = capabilities_for(reviewer.role).scope

    if scope is Scope.WAREHOUSE:
        if not reviewer.assigned_warehouse_id:
            return Predicate.nothing()
        return Predicate.where(WAREHOUSE_FIELD, Op.EQ, reviewer.assigned_warehouse_id)

    if scope is Scope.REGION:
        if not reviewer.assigned_region_id:
            return Predicate.nothing()
        return Predicate.where(REGION_FIELD, Op.EQ, reviewer.assigned_region_id)

    return Predicate.everything()


def is_visible(reviewer: Reviewer, record: Mapping[str, Any]) -> bool:
    return resolve(reviewer).matches(record)


def ensure_visible(reviewer: Reviewer, record: Mapping[str, Any], *, record_id: str) -> None:
    """Raise ``ScopeViolationError`` unless the record is inside the reviewer's scope."""
    if not is_visible(reviewer, record):
        raise ScopeViolationError(details={"id": record_id})

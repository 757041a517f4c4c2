"""
Event Models for Penny Ledger

After a successful mutation the engines publish an event so that whoever
owns a derived view (budget statuses, balance history, widgets) can
recompute it. The engines never push recomputed values themselves.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class LedgerEventType(str, Enum):
    """Notifications published by the engines."""
    OPERATION_CHANGED = "operation:changed"
    ACCOUNT_CHANGED = "account:changed"
    CATEGORY_CHANGED = "category:changed"
    BUDGETS_NEED_REFRESH = "budgets:refresh"
    PLANNED_OPERATION_EXECUTED = "planned:executed"
    RELOAD_ALL = "reload:all"


class ChangeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    EXECUTED = "executed"


class LedgerEvent(BaseModel):
    """A single notification."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.now)
    event_type: LedgerEventType
    action: Optional[ChangeAction] = None

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'operation', 'budget')"
    )
    entity_id: Optional[str] = None

    # Accounts whose balance moved; lets listeners refresh only those
    account_ids: list[int] = Field(default_factory=list)

    details: dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "action": self.action.value if self.action else None,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "account_ids": self.account_ids,
            "details": self.details,
        }


class LedgerEventBuilder:
    """
    Helper class to build events with common patterns.

    Usage:
        event = LedgerEventBuilder.operation_changed(ChangeAction.CREATED, op_id, [1, 2])
        await notifier.emit(event)
    """

    @staticmethod
    def operation_changed(
        action: ChangeAction,
        operation_id: int,
        account_ids: list[int],
        details: Optional[dict] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.OPERATION_CHANGED,
            action=action,
            entity_type="operation",
            entity_id=str(operation_id),
            account_ids=sorted(set(account_ids)),
            details=details or {},
        )

    @staticmethod
    def account_changed(
        action: ChangeAction,
        account_id: int,
        details: Optional[dict] = None,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.ACCOUNT_CHANGED,
            action=action,
            entity_type="account",
            entity_id=str(account_id),
            account_ids=[account_id],
            details=details or {},
        )

    @staticmethod
    def category_changed(action: ChangeAction, category_id: str) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.CATEGORY_CHANGED,
            action=action,
            entity_type="category",
            entity_id=category_id,
        )

    @staticmethod
    def budgets_need_refresh(budget_id: Optional[str] = None, action: Optional[ChangeAction] = None) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.BUDGETS_NEED_REFRESH,
            action=action,
            entity_type="budget",
            entity_id=budget_id,
        )

    @staticmethod
    def planned_operation_executed(
        template_id: str,
        month: str,
        operation_id: int,
        template_deleted: bool,
    ) -> LedgerEvent:
        return LedgerEvent(
            event_type=LedgerEventType.PLANNED_OPERATION_EXECUTED,
            action=ChangeAction.EXECUTED,
            entity_type="planned_operation",
            entity_id=template_id,
            details={
                "month": month,
                "operation_id": operation_id,
                "template_deleted": template_deleted,
            },
        )

    @staticmethod
    def reload_all(reason: str) -> LedgerEvent:
        """Everything changed (database reset or restore); drop all derived views."""
        return LedgerEvent(
            event_type=LedgerEventType.RELOAD_ALL,
            details={"reason": reason},
        )

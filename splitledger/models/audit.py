"""
Audit Models for SplitLedger

Every mutation of a group, the user's settings or a ledger is recorded as
an audit event. This provides:
1. Traceability of who changed what, and in which group
2. Debugging information when the local cache and Drive disagree
3. Ability to reconstruct history

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from splitledger.models.group import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Groups
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    GROUP_JOINED = "group_joined"
    GROUP_LEFT = "group_left"
    GROUP_SHARING_CHANGED = "group_sharing_changed"

    # Settings
    GROUPS_RECONCILED = "groups_reconciled"
    SETTINGS_SAVED = "settings_saved"
    ACTIVE_GROUP_CHANGED = "active_group_changed"

    # Ledger
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    SETTLEMENT_ADDED = "settlement_added"
    SETTLEMENT_UPDATED = "settlement_updated"
    SETTLEMENT_DELETED = "settlement_deleted"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what is this about?
    actor_email: Optional[str] = Field(
        default=None,
        description="Account that performed the action"
    )
    group_id: Optional[str] = Field(
        default=None,
        description="Group (spreadsheet id) the event relates to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'expense', 'settings')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "actor_email": self.actor_email,
            "group_id": self.group_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.group_created(group_id, name, member_count, actor_email)
        event = AuditEventBuilder.ledger_record_changed(
            AuditEventType.EXPENSE_ADDED, group_id, "expense", expense_id, actor_email
        )
    """

    @staticmethod
    def group_created(group_id: str, name: str, member_count: int, actor_email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            actor_email=actor_email,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            description=f"Group created: {name}",
            details={"name": name, "member_count": member_count},
        )

    @staticmethod
    def group_updated(
        group_id: str,
        name: str,
        added: list[str],
        removed: list[str],
        actor_email: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_UPDATED,
            actor_email=actor_email,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            description=f"Group updated: {name}",
            details={"name": name, "members_added": added, "members_removed": removed},
        )

    @staticmethod
    def group_deleted(group_id: str, unshared_only: bool, actor_email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_DELETED,
            actor_email=actor_email,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            description="Group unshared" if unshared_only else "Group deleted",
            details={"unshared_only": unshared_only},
        )

    @staticmethod
    def group_joined(group_id: str, name: str, actor_email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_JOINED,
            actor_email=actor_email,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            description=f"Joined group: {name}",
        )

    @staticmethod
    def group_left(group_id: str, actor_email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_LEFT,
            actor_email=actor_email,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            description="Left group",
        )

    @staticmethod
    def groups_reconciled(added: list[str], removed: list[str], actor_email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUPS_RECONCILED,
            actor_email=actor_email,
            entity_type="settings",
            description=f"Group index reconciled (+{len(added)} / -{len(removed)})",
            details={"added": added, "removed": removed},
        )

    @staticmethod
    def group_sharing_changed(group_id: str, public: bool, actor_email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_SHARING_CHANGED,
            actor_email=actor_email,
            group_id=group_id,
            entity_type="group",
            entity_id=group_id,
            description="Link sharing enabled" if public else "Link sharing disabled",
            details={"public": public},
        )

    @staticmethod
    def settings_changed(
        event_type: AuditEventType,
        actor_email: str,
        active_group_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            actor_email=actor_email,
            group_id=active_group_id,
            entity_type="settings",
            description="Active group changed" if event_type == AuditEventType.ACTIVE_GROUP_CHANGED else "Settings saved",
            details={"active_group_id": active_group_id},
        )

    @staticmethod
    def ledger_record_changed(
        event_type: AuditEventType,
        group_id: str,
        entity_type: str,
        entity_id: str,
        actor_email: str,
        amount: Optional[str] = None,
    ) -> AuditEvent:
        details = {"amount": amount} if amount is not None else {}
        return AuditEvent(
            event_type=event_type,
            actor_email=actor_email,
            group_id=group_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} {event_type.value.split('_')[-1]}",
            details=details,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            details=details or {},
            error_message=error_message,
        )

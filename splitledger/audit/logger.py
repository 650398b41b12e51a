"""
Audit Logger

DESIGN DECISION: Every mutation of shared state is logged.
This provides:
1. Complete traceability
2. Debugging capability when Drive and the local index disagree
3. A record of who changed which group

The audit logger:
- Writes to the local structured log only (Drive is not an audit store)
- Gracefully handles failures (doesn't crash the app if logging fails)
"""

from typing import Optional

import structlog

from splitledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Every event carries the acting account so logs from several users
    sharing one Drive group can be told apart.
    """

    def __init__(self, actor_email: Optional[str] = None):
        self._actor_email = actor_email
        self._logger = structlog.get_logger("splitledger.audit")

    def bind(self, actor_email: str) -> "AuditLogger":
        """Return a logger that stamps events with the given account."""
        return AuditLogger(actor_email=actor_email)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be written. Never raises.
        """
        if event.actor_email is None and self._actor_email is not None:
            event = event.model_copy(update={"actor_email": self._actor_email})

        try:
            log_dict = event.to_log_dict()
            if event.severity.value == "error":
                self._logger.error("audit_event", **log_dict)
            elif event.severity.value == "warning":
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Audit must not break the main flow
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

        return True

    def log_group_created(self, group_id: str, name: str, member_count: int) -> None:
        self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            member_count=member_count,
            actor_email=self._actor_email,
        ))

    def log_group_updated(
        self,
        group_id: str,
        name: str,
        added: list[str],
        removed: list[str],
    ) -> None:
        self.log(AuditEventBuilder.group_updated(
            group_id=group_id,
            name=name,
            added=added,
            removed=removed,
            actor_email=self._actor_email,
        ))

    def log_group_deleted(self, group_id: str, unshared_only: bool) -> None:
        self.log(AuditEventBuilder.group_deleted(
            group_id=group_id,
            unshared_only=unshared_only,
            actor_email=self._actor_email,
        ))

    def log_group_joined(self, group_id: str, name: str) -> None:
        self.log(AuditEventBuilder.group_joined(
            group_id=group_id,
            name=name,
            actor_email=self._actor_email,
        ))

    def log_group_left(self, group_id: str) -> None:
        self.log(AuditEventBuilder.group_left(group_id=group_id, actor_email=self._actor_email))

    def log_groups_reconciled(self, added: list[str], removed: list[str]) -> None:
        self.log(AuditEventBuilder.groups_reconciled(
            added=added,
            removed=removed,
            actor_email=self._actor_email,
        ))

    def log_group_sharing_changed(self, group_id: str, public: bool) -> None:
        self.log(AuditEventBuilder.group_sharing_changed(
            group_id=group_id,
            public=public,
            actor_email=self._actor_email,
        ))

    def log_settings_change(
        self,
        event_type: AuditEventType,
        active_group_id: Optional[str] = None,
    ) -> None:
        self.log(AuditEventBuilder.settings_changed(
            event_type=event_type,
            actor_email=self._actor_email,
            active_group_id=active_group_id,
        ))

    def log_ledger_change(
        self,
        event_type: AuditEventType,
        group_id: str,
        entity_type: str,
        entity_id: str,
        amount: Optional[str] = None,
    ) -> None:
        self.log(AuditEventBuilder.ledger_record_changed(
            event_type=event_type,
            group_id=group_id,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_email=self._actor_email,
            amount=amount,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        ))

"""
Audit logging service for tracking critical actions.

Rows are added to the caller's session so they commit (or roll back) together
with the audited operation.
"""
from backoffice.models.audit_log import AuditLog, AuditAction
from backoffice.utils.time_utils import now
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    tenant_id: int,
    action: AuditAction,
    resource_type: str = None,
    resource_id: int = None,
    details: dict = None,
    user_id: int = None
):
    """
    Log an auditable action to the database.

    Args:
        session: Database session
        tenant_id: Tenant ID
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'purchase', 'stock_adjustment')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)
        user_id: Acting user, as received from the caller
    """
    try:
        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str)
            except (TypeError, ValueError) as e:
                logger.warning(f"Failed to serialize audit details: {e}")
                details_json = str(details)

        audit_entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details_json,
            created_at=now()
        )

        session.add(audit_entry)
        # Note: Caller is responsible for committing the session

        logger.info(f"Audit log created: {action.value} by user {user_id} on {resource_type} {resource_id}")

    except Exception as e:
        # Audit failures must not break business logic
        logger.error(f"Failed to create audit log: {e}")


def get_audit_logs(
    session,
    tenant_id: int,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    resource_type_filter: str = None,
    resource_id_filter: int = None
):
    """
    Retrieve audit logs for a tenant with optional filters, newest first.
    """
    query = session.query(AuditLog).filter(
        AuditLog.tenant_id == tenant_id
    )

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    if resource_id_filter:
        query = query.filter(AuditLog.resource_id == resource_id_filter)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return query.limit(limit).offset(offset).all()

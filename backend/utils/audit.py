from database import database
from models import AuditLog, AuditAction, SignerRole
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Fields that changed between two deal snapshots, as {field: {"from": x, "to": y}}.

    Fields present on only one side are reported with None on the other side.
    """
    if not before and not after:
        return {}
    before = before or {}
    after = after or {}

    changed = {}
    for key in set(before.keys()) | set(after.keys()):
        if before.get(key) != after.get(key):
            changed[key] = {"from": before.get(key), "to": after.get(key)}
    return changed

def mask_email(email: Optional[str]) -> Optional[str]:
    """ana@brand.com -> a***@brand.com"""
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"

async def create_audit_log(
    action: AuditAction,
    deal_id: Optional[str] = None,
    actor_email: Optional[str] = None,
    signer_role: Optional[SignerRole] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> str:
    """Create an audit log entry for a deal event.

    Args:
        action: The audit action type
        deal_id: Deal the event belongs to
        actor_email: Authenticated user performing the action (stored masked)
        signer_role: Signer role involved, for OTP and signing events
        before_state: State before the change
        after_state: State after the change
        metadata: Additional metadata
        ip_address: IP address of the request
    """
    try:
        db = database.get_db()

        enriched_metadata = metadata.copy() if metadata else {}
        if before_state and after_state:
            diff = calculate_diff(before_state, after_state)
            if diff:
                enriched_metadata["diff"] = diff

        audit_log = AuditLog(
            action=action,
            actor_email=mask_email(actor_email),
            deal_id=deal_id,
            signer_role=signer_role,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata if enriched_metadata else None,
            ip_address=ip_address,
        )

        doc = audit_log.model_dump(mode="json")
        await db.audit_logs.insert_one(doc)
        logger.info(f"Audit log created: {action.value}" + (f" deal={deal_id}" if deal_id else ""))
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Never fail the main operation due to audit log failure
        return ""

async def get_audit_logs_for_deal(deal_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent audit entries for a deal."""
    try:
        db = database.get_db()
        cursor = db.audit_logs.find(
            {"deal_id": deal_id},
            {"_id": 0}
        ).sort("timestamp", -1).limit(limit)

        return await cursor.to_list(length=limit)
    except Exception as e:
        logger.error(f"Failed to get audit logs for deal {deal_id}: {e}")
        return []

# app/x402/audit.py
"""
Audit logging for x402 payments.

This module logs every payment decision for:
- Reconciling allocated credits against on-chain transfers
- Telling client problems (rejected proofs) from operational
  problems (ledger failures)
- Spotting development bypass use

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH

Events logged:
- 402 returned (resource, amount, network, pay_to)
- Malformed X-PAYMENT header (decode failure kind)
- Proof rejected (rejection reason)
- Proof accepted (payer, tx, amount)
- Development bypass used
- Credits allocated / allocation failed
- Error (type, context)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_MALFORMED = "payment_malformed"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_ACCEPTED = "payment_accepted"
    PAYMENT_BYPASSED = "payment_bypassed"
    CREDITS_ALLOCATED = "credits_allocated"
    ALLOCATION_FAILED = "allocation_failed"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Log an audit event to the x402 audit log.

    Write failures are logged and swallowed; auditing never fails a request.

    Returns:
        The request_id used for this event, or None on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()

        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(
    client_ip: str,
    resource: str,
    amount: str,
    network: str,
    pay_to: str,
    reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "resource": resource,
            "amount": amount,
            "network": network,
            "pay_to": pay_to,
            "reason": reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_malformed(
    client_ip: str,
    kind: str,
    detail: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an unreadable X-PAYMENT header."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_MALFORMED,
        data={
            "kind": kind,
            "detail": detail,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_rejected(
    client_ip: str,
    reason: str,
    policy: str,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a proof that failed validation."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={
            "reason": reason,
            "policy": policy,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_accepted(
    client_ip: str,
    payer: Optional[str],
    transaction_hash: Optional[str],
    amount: Optional[str],
    policy: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a proof that unlocked the resource."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_ACCEPTED,
        data={
            "transaction_hash": transaction_hash,
            "amount": amount,
            "policy": policy,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_bypassed(
    client_ip: str,
    path: str,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log use of the development payment bypass."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_BYPASSED,
        data={
            "path": path,
            "payment_bypassed": True,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_credits_allocated(
    wallet_address: str,
    credits: int,
    transaction_hash: Optional[str],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful ledger allocation."""
    return log_audit_event(
        event_type=AuditEventType.CREDITS_ALLOCATED,
        data={
            "credits": credits,
            "transaction_hash": transaction_hash,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_allocation_failed(
    wallet_address: str,
    credits: int,
    transaction_hash: Optional[str],
    error_message: str,
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a ledger failure after the payment was already accepted."""
    return log_audit_event(
        event_type=AuditEventType.ALLOCATION_FAILED,
        data={
            "credits": credits,
            "transaction_hash": transaction_hash,
            "error_message": error_message,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def _iter_events():
    log_path = get_audit_log_path()
    if not log_path.exists():
        return
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)

    Returns:
        List of audit events (most recent first)
    """
    try:
        events = [
            event for event in _iter_events()
            if (not event_type or event.get("event_type") == event_type.value)
            and (not client_ip or event.get("client_ip") == client_ip)
        ]
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and date range
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return {
            "total_events": 0,
            "events_by_type": {},
            "log_path": str(log_path),
            "log_exists": False,
        }

    events_by_type: Dict[str, int] = {}
    total = 0
    first_timestamp = None
    last_timestamp = None

    try:
        for event in _iter_events():
            total += 1
            name = event.get("event_type", "unknown")
            events_by_type[name] = events_by_type.get(name, 0) + 1

            timestamp = event.get("timestamp")
            if timestamp:
                if first_timestamp is None:
                    first_timestamp = timestamp
                last_timestamp = timestamp
    except OSError as e:
        logger.error(f"Failed to get audit stats: {e}")
        return {
            "total_events": 0,
            "events_by_type": {},
            "log_path": str(log_path),
            "log_exists": False,
            "error": str(e),
        }

    return {
        "total_events": total,
        "events_by_type": events_by_type,
        "first_event": first_timestamp,
        "last_event": last_timestamp,
        "log_path": str(log_path),
        "log_exists": True,
    }

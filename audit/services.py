"""
Audit Log Service

- create_audit_log: append a hash-chained entry (never raises)
- get_audit_trail / get_farm_audit_logs: read helpers
- verify_integrity / verify_farm_integrity: recompute hashes and chain links
"""

import json
import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from .models import GENESIS_HASH, AuditLog, compute_hash

logger = logging.getLogger(__name__)


def _json_safe(value):
    """Normalise a snapshot to plain JSON types so its hash survives a DB round trip."""
    if value is None:
        return {}
    return json.loads(json.dumps(value, default=str))


def create_audit_log(
    event_type: str,
    entity_type: str,
    entity_id,
    farmer,
    performed_by=None,
    performed_by_role: str = '',
    data_snapshot: dict = None,
    changes: dict = None,
    metadata: dict = None,
):
    """
    Append an audit entry to the farmer's hash chain.

    Runs in its own savepoint and never raises: a failed audit write is
    logged and the caller's operation continues.

    Returns:
        AuditLog or None
    """
    try:
        with transaction.atomic():
            # Serialize writers on the same chain
            get_user_model().objects.select_for_update().filter(pk=farmer.pk).first()

            last_hash = (
                AuditLog.objects.filter(farmer=farmer)
                .order_by('-id')
                .values_list('current_hash', flat=True)
                .first()
            )
            previous_hash = last_hash or GENESIS_HASH
            timestamp = timezone.now()
            snapshot = _json_safe(data_snapshot)

            return AuditLog.objects.create(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                farmer=farmer,
                performed_by=performed_by,
                performed_by_role=performed_by_role or getattr(performed_by, 'role', ''),
                timestamp=timestamp,
                data_snapshot=snapshot,
                changes=_json_safe(changes),
                metadata=_json_safe(metadata),
                previous_hash=previous_hash,
                current_hash=compute_hash(
                    previous_hash, timestamp, entity_id, entity_type, event_type, snapshot
                ),
            )
    except Exception as e:
        # Log but don't raise - audit logging should never break operations
        logger.error(f"Failed to create audit log for {entity_type} {entity_id} ({event_type}): {e}")
        return None


def get_audit_trail(entity_type, entity_id):
    """All entries for one entity, oldest first."""
    return (
        AuditLog.objects.filter(entity_type=entity_type, entity_id=str(entity_id))
        .select_related('performed_by')
        .order_by('id')
    )


def get_farm_audit_logs(farmer, event_type=None, entity_type=None, start_date=None, end_date=None):
    """A farmer's entries, newest first, with optional filters."""
    logs = AuditLog.objects.filter(farmer=farmer).select_related('performed_by')
    if event_type:
        logs = logs.filter(event_type=event_type)
    if entity_type:
        logs = logs.filter(entity_type=entity_type)
    if start_date:
        logs = logs.filter(timestamp__date__gte=start_date)
    if end_date:
        logs = logs.filter(timestamp__date__lte=end_date)
    return logs.order_by('-id')


def verify_integrity(entity_type, entity_id):
    """
    Recompute the hash of every entry for one entity.

    Chain links are not checked here since an entity's entries are
    interleaved with other entities of the same farmer.
    """
    logs = list(get_audit_trail(entity_type, entity_id))
    tampered = [str(log.id) for log in logs if log.expected_hash() != log.current_hash]
    return {
        'is_valid': not tampered,
        'total_logs': len(logs),
        'tampered_logs': tampered,
        'verified_at': timezone.now().isoformat(),
    }


def verify_farm_integrity(farmer):
    """
    Walk a farmer's whole chain: every hash must match its contents and
    every entry must point at its predecessor's hash.
    """
    logs = AuditLog.objects.filter(farmer=farmer).order_by('id')

    tampered = []
    broken_links = []
    expected_previous = GENESIS_HASH
    total = 0
    for log in logs.iterator():
        total += 1
        if log.expected_hash() != log.current_hash:
            tampered.append(str(log.id))
        if log.previous_hash != expected_previous:
            broken_links.append(str(log.id))
        expected_previous = log.current_hash

    is_valid = not tampered and not broken_links
    if not is_valid:
        logger.warning(
            f"Audit chain verification failed for farmer {farmer.pk}: "
            f"{len(tampered)} tampered, {len(broken_links)} broken link(s)"
        )
    return {
        'is_valid': is_valid,
        'total_logs': total,
        'tampered_logs': tampered,
        'broken_links': broken_links,
        'verified_at': timezone.now().isoformat(),
    }

"""
Compliance Audit Log

Append-only record of every mutation in the AMU workflow. Entries are
hash-chained per farmer: each entry stores the hash of the farmer's
previous entry, so editing or deleting any row breaks verification of
every later one.
"""

import hashlib
import json

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

GENESIS_HASH = '0'


def compute_hash(previous_hash, timestamp, entity_id, entity_type, event_type, data_snapshot):
    """SHA-256 over the canonical JSON form of an entry's immutable fields."""
    payload = json.dumps(
        {
            'previousHash': previous_hash,
            'timestamp': timestamp.isoformat(),
            'entityId': str(entity_id),
            'entityType': entity_type,
            'eventType': event_type,
            'dataSnapshot': data_snapshot,
        },
        sort_keys=True,
        separators=(',', ':'),
        default=str,
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


class AuditLog(models.Model):
    """
    A single audit entry.

    Rows are never updated; ``save()`` refuses to overwrite an existing entry.
    """

    class EventType(models.TextChoices):
        CREATE = 'CREATE', 'Create'
        UPDATE = 'UPDATE', 'Update'
        DELETE = 'DELETE', 'Delete'
        APPROVE = 'APPROVE', 'Approve'
        REJECT = 'REJECT', 'Reject'
        COMPLETE = 'COMPLETE', 'Complete'

    class EntityType(models.TextChoices):
        FEED_ADMINISTRATION = 'FeedAdministration', 'Feed Administration'
        FEED = 'Feed', 'Feed'
        ANIMAL = 'Animal', 'Animal'
        PRESCRIPTION = 'Prescription', 'Prescription'
        MRL_TEST = 'MRLTest', 'MRL Test'

    event_type = models.CharField(max_length=20, choices=EventType.choices, db_index=True)
    entity_type = models.CharField(max_length=30, choices=EntityType.choices)
    entity_id = models.CharField(max_length=64, help_text="Primary key of the affected entity")

    farmer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='audit_logs',
        help_text="Farmer whose records were affected (chain owner)"
    )
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    performed_by_role = models.CharField(max_length=20)

    timestamp = models.DateTimeField(default=timezone.now, editable=False, db_index=True)

    data_snapshot = models.JSONField(default=dict, blank=True)
    changes = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    previous_hash = models.CharField(max_length=64, default=GENESIS_HASH)
    current_hash = models.CharField(max_length=64, unique=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-timestamp', '-id']
        verbose_name = 'Audit Log'
        verbose_name_plural = 'Audit Logs'
        indexes = [
            models.Index(fields=['entity_type', 'entity_id', 'timestamp']),
            models.Index(fields=['farmer', 'timestamp']),
        ]

    def __str__(self):
        return f"{self.event_type} {self.entity_type} {self.entity_id} at {self.timestamp}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError('Audit log entries are immutable')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError('Audit log entries cannot be deleted')

    def expected_hash(self):
        return compute_hash(
            self.previous_hash,
            self.timestamp,
            self.entity_id,
            self.entity_type,
            self.event_type,
            self.data_snapshot,
        )

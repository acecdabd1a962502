"""
Feed Inventory API Views

Endpoints for a farmer's feed batches. Quantities are read-only here except
through the ledger (``consume``); batches used by an administration cannot
be deleted.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.identity import CallerMixin
from audit.models import AuditLog
from audit.services import create_audit_log
from core.exceptions import NotFound, PermissionDenied, ServiceError, ValidationFailed, error_response
from core.pagination import StandardResultsSetPagination

from . import ledger
from .models import FeedBatch

# Fields a farmer may set on create/update. Quantities are handled separately.
FEED_FIELDS = (
    'feed_name', 'feed_type', 'batch_number', 'manufacturer', 'supplier',
    'prescription_required', 'antimicrobial_name', 'antimicrobial_concentration',
    'concentration_unit', 'withdrawal_period_days', 'target_species', 'unit',
    'cost_per_unit', 'purchase_date', 'expiry_date', 'notes',
)
QUANTITY_FIELDS = ('total_quantity', 'remaining_quantity')
# Withdrawal and approval rules read these from the batch; frozen once it is administered.
MEDICATION_FIELDS = (
    'prescription_required', 'antimicrobial_name', 'antimicrobial_concentration',
    'concentration_unit', 'withdrawal_period_days',
)


def serialize_feed(feed):
    """Serialize a single feed batch."""
    return {
        'id': str(feed.id),
        'farmer': str(feed.farmer_id),
        'feed_name': feed.feed_name,
        'feed_type': feed.feed_type,
        'batch_number': feed.batch_number,
        'manufacturer': feed.manufacturer,
        'supplier': feed.supplier,
        'prescription_required': feed.prescription_required,
        'antimicrobial_name': feed.antimicrobial_name,
        'antimicrobial_concentration': (
            float(feed.antimicrobial_concentration) if feed.antimicrobial_concentration is not None else None
        ),
        'concentration_unit': feed.concentration_unit,
        'withdrawal_period_days': feed.withdrawal_period_days,
        'target_species': feed.target_species,
        'total_quantity': float(feed.total_quantity),
        'remaining_quantity': float(feed.remaining_quantity),
        'consumed_quantity': float(feed.consumed_quantity),
        'unit': feed.unit,
        'cost_per_unit': float(feed.cost_per_unit) if feed.cost_per_unit is not None else None,
        'purchase_date': feed.purchase_date.isoformat(),
        'expiry_date': feed.expiry_date.isoformat(),
        'is_active': feed.is_active,
        'is_expired': feed.is_expired,
        'is_expiring_soon': feed.is_expiring_soon,
        'is_low_stock': feed.is_low_stock,
        'depleted_at': feed.depleted_at.isoformat() if feed.depleted_at else None,
        'notes': feed.notes,
        'created_at': feed.created_at.isoformat(),
        'updated_at': feed.updated_at.isoformat(),
    }


class FeedViewMixin(CallerMixin):
    """Shared lookups and input coercion for feed views."""

    permission_classes = [IsAuthenticated]

    def _visible_feeds(self):
        caller = self.caller
        feeds = FeedBatch.objects.select_related('farmer')
        if caller.is_farmer:
            return feeds.filter(farmer=caller.user)
        if caller.is_veterinarian:
            return feeds.filter(farmer__assigned_vet=caller.user)
        return feeds

    def _get_feed(self, feed_id, for_update=False):
        try:
            feed = FeedBatch.objects.select_related('farmer').get(pk=feed_id)
        except (FeedBatch.DoesNotExist, ValidationError, ValueError):
            raise NotFound('Feed not found')
        if for_update:
            if feed.farmer_id != self.caller.id:
                raise PermissionDenied('Not authorized to modify this feed')
        elif not self._visible_feeds().filter(pk=feed.pk).exists():
            raise PermissionDenied('Not authorized to view this feed')
        return feed

    def _require_farmer(self):
        if not self.caller.is_farmer:
            raise PermissionDenied('Only farmers can manage feed inventory')

    def _parse_date(self, date_str):
        if not date_str:
            return None
        for fmt in ('%Y-%m-%d', '%d/%m/%Y'):
            try:
                return datetime.strptime(str(date_str), fmt).date()
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(str(date_str).replace('Z', '+00:00')).date()
        except ValueError:
            raise ValidationFailed(f"Invalid date: {date_str}")

    def _to_decimal(self, value, field):
        if value in (None, ''):
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValidationFailed(f"Invalid number for {field}")

    def _to_int(self, value, field):
        if value in (None, ''):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationFailed(f"Invalid integer for {field}")

    def _to_bool(self, value):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ('1', 'true', 'yes', 'on')

    def _apply_fields(self, feed, data):
        """Copy allowed fields from request data onto the batch."""
        for field in FEED_FIELDS:
            if field not in data:
                continue
            value = data.get(field)
            if field in ('purchase_date', 'expiry_date'):
                value = self._parse_date(value)
            elif field in ('antimicrobial_concentration', 'cost_per_unit'):
                value = self._to_decimal(value, field)
            elif field == 'withdrawal_period_days':
                value = self._to_int(value, field)
            elif field == 'prescription_required':
                value = self._to_bool(value)
            elif field == 'target_species':
                value = value or []
            elif value is None:
                value = ''
            setattr(feed, field, value)


class FeedListView(FeedViewMixin, APIView):
    """
    GET  /api/feed/ - List feed batches
    POST /api/feed/ - Add a feed batch (farmer)
    """

    pagination_class = StandardResultsSetPagination

    def get(self, request):
        feeds = self._visible_feeds().order_by('-created_at')

        feed_type = request.query_params.get('feed_type')
        if feed_type:
            feeds = feeds.filter(feed_type=feed_type)
        medicated = request.query_params.get('prescription_required')
        if medicated not in (None, ''):
            feeds = feeds.filter(prescription_required=self._to_bool(medicated))
        search = request.query_params.get('search')
        if search:
            feeds = feeds.filter(
                Q(feed_name__icontains=search) | Q(antimicrobial_name__icontains=search) | Q(batch_number__icontains=search)
            )

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(feeds, request)
        if page is not None:
            data = [serialize_feed(feed) for feed in page]
            return Response(paginator.get_paginated_response_data(data))

        data = [serialize_feed(feed) for feed in feeds]
        return Response({'results': data, 'count': len(data)})

    def post(self, request):
        try:
            self._require_farmer()
            total_quantity = self._to_decimal(request.data.get('total_quantity'), 'total_quantity')
            if total_quantity is None or total_quantity <= 0:
                raise ValidationFailed('Total quantity must be greater than 0')
            if not request.data.get('expiry_date'):
                raise ValidationFailed('Expiry date is required')

            feed = FeedBatch(farmer=request.user, total_quantity=total_quantity)
            self._apply_fields(feed, request.data)
            if not feed.purchase_date:
                feed.purchase_date = timezone.localdate()
            feed.remaining_quantity = total_quantity

            with transaction.atomic():
                feed.full_clean()
                feed.save()
                create_audit_log(
                    event_type=AuditLog.EventType.CREATE,
                    entity_type=AuditLog.EntityType.FEED,
                    entity_id=feed.id,
                    farmer=request.user,
                    performed_by=request.user,
                    performed_by_role=self.caller.role,
                    data_snapshot=serialize_feed(feed),
                )
        except ServiceError as exc:
            return error_response(exc)
        except ValidationError as exc:
            return Response({'errors': exc.message_dict}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {
                'success': True,
                'message': 'Feed added successfully',
                'feed': serialize_feed(feed),
            },
            status=status.HTTP_201_CREATED,
        )


class FeedDetailView(FeedViewMixin, APIView):
    """
    GET    /api/feed/<id>/ - Feed batch detail
    PUT    /api/feed/<id>/ - Update descriptive fields (farmer)
    DELETE /api/feed/<id>/ - Delete an unused feed batch (farmer)
    """

    def get(self, request, feed_id):
        try:
            feed = self._get_feed(feed_id)
        except ServiceError as exc:
            return error_response(exc)
        return Response(serialize_feed(feed))

    def put(self, request, feed_id):
        try:
            self._require_farmer()
            locked = sorted(field for field in QUANTITY_FIELDS if field in request.data)
            if locked:
                raise ValidationFailed(
                    'Feed quantities cannot be edited directly',
                    fields=locked,
                )
            with transaction.atomic():
                feed = self._get_feed(feed_id, for_update=True)
                feed = FeedBatch.objects.select_for_update().get(pk=feed.pk)
                before = serialize_feed(feed)
                self._apply_fields(feed, request.data)
                applied = serialize_feed(feed)
                frozen = sorted(key for key in MEDICATION_FIELDS if before[key] != applied[key])
                if frozen and feed.administrations.exists():
                    raise ValidationFailed(
                        'Medication details cannot be changed once the feed has been administered',
                        fields=frozen,
                    )
                feed.full_clean()
                feed.save()
                after = serialize_feed(feed)
                changes = {
                    key: {'from': before[key], 'to': after[key]}
                    for key in FEED_FIELDS
                    if before.get(key) != after.get(key)
                }
                create_audit_log(
                    event_type=AuditLog.EventType.UPDATE,
                    entity_type=AuditLog.EntityType.FEED,
                    entity_id=feed.id,
                    farmer=feed.farmer,
                    performed_by=request.user,
                    performed_by_role=self.caller.role,
                    data_snapshot=after,
                    changes=changes,
                )
        except ServiceError as exc:
            return error_response(exc)
        except ValidationError as exc:
            return Response({'errors': exc.message_dict}, status=status.HTTP_400_BAD_REQUEST)

        return Response({'success': True, 'message': 'Feed updated successfully', 'feed': after})

    def delete(self, request, feed_id):
        try:
            self._require_farmer()
            with transaction.atomic():
                feed = self._get_feed(feed_id, for_update=True)
                if feed.administrations.exists():
                    return Response(
                        {'error': 'Cannot delete feed that has been used in feed administrations'},
                        status=status.HTTP_400_BAD_REQUEST,
                    )
                create_audit_log(
                    event_type=AuditLog.EventType.DELETE,
                    entity_type=AuditLog.EntityType.FEED,
                    entity_id=feed.id,
                    farmer=feed.farmer,
                    performed_by=request.user,
                    performed_by_role=self.caller.role,
                    data_snapshot=serialize_feed(feed),
                )
                feed.delete()
        except ServiceError as exc:
            return error_response(exc)

        return Response({'success': True, 'message': 'Feed deleted successfully'})


class FeedConsumeView(FeedViewMixin, APIView):
    """
    PATCH /api/feed/<id>/consume/

    Manual consumption outside a feed administration (spillage, spoilage).
    """

    def patch(self, request, feed_id):
        try:
            self._require_farmer()
            quantity = ledger.to_quantity(request.data.get('quantity'))
            feed = self._get_feed(feed_id, for_update=True)
            ledger.consume(
                feed,
                quantity,
                recorded_by=request.user,
                notes=request.data.get('notes', '') or 'Manual consumption',
            )
        except ServiceError as exc:
            return error_response(exc)

        return Response({
            'success': True,
            'message': 'Feed quantity updated',
            'feed': serialize_feed(feed),
        })


class ActiveFeedView(FeedViewMixin, APIView):
    """
    GET /api/feed/active/

    Active, unexpired batches with stock left, i.e. usable for a new administration.
    """

    def get(self, request):
        feeds = self._visible_feeds().filter(
            is_active=True,
            remaining_quantity__gt=0,
            expiry_date__gte=timezone.localdate(),
        ).order_by('expiry_date', 'feed_name')
        data = [serialize_feed(feed) for feed in feeds]
        return Response({'results': data, 'count': len(data)})


class ExpiringFeedView(FeedViewMixin, APIView):
    """GET /api/feed/expiring/<days>/"""

    def get(self, request, days):
        today = timezone.localdate()
        feeds = self._visible_feeds().filter(
            is_active=True,
            expiry_date__gte=today,
            expiry_date__lte=today + timedelta(days=days),
        ).order_by('expiry_date')
        data = [serialize_feed(feed) for feed in feeds]
        return Response({'days': days, 'results': data, 'count': len(data)})


class FeedStatsView(FeedViewMixin, APIView):
    """GET /api/feed/stats/ - Inventory totals for the caller's visible batches."""

    def get(self, request):
        feeds = self._visible_feeds()
        today = timezone.localdate()

        totals = feeds.aggregate(
            total_batches=Count('id'),
            active_batches=Count('id', filter=Q(is_active=True)),
            medicated_batches=Count('id', filter=Q(prescription_required=True)),
            expired_batches=Count('id', filter=Q(expiry_date__lt=today)),
        )
        by_unit = {
            row['unit']: {
                'total_quantity': float(row['total'] or 0),
                'remaining_quantity': float(row['remaining'] or 0),
            }
            for row in feeds.values('unit').annotate(
                total=Sum('total_quantity'),
                remaining=Sum('remaining_quantity'),
            ).order_by('unit')
        }

        active_feeds = list(feeds.filter(is_active=True))
        antimicrobial_in_stock = sum(
            (feed.total_antimicrobial_content for feed in active_feeds),
            Decimal('0'),
        )

        return Response({
            **totals,
            'expiring_soon': sum(1 for feed in active_feeds if feed.is_expiring_soon),
            'low_stock': sum(1 for feed in active_feeds if feed.is_low_stock),
            'antimicrobial_in_stock': float(antimicrobial_in_stock),
            'quantities_by_unit': by_unit,
        })

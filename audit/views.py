"""
Audit Trail API Views

Farmers read their own chain, veterinarians the chains of farmers they
supervise, regulators everything. Only regulators run integrity checks.
"""

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.identity import CallerMixin
from accounts.permissions import IsRegulator
from core.exceptions import ServiceError, error_response
from core.pagination import StandardResultsSetPagination
from feed_administration.services.workflow import parse_date

from .models import AuditLog
from .serializers import AuditLogSerializer
from .services import get_audit_trail, get_farm_audit_logs, verify_farm_integrity, verify_integrity


def _visible_logs(caller, logs):
    if caller.is_farmer:
        return logs.filter(farmer=caller.user)
    if caller.is_veterinarian:
        return logs.filter(farmer__assigned_vet=caller.user)
    return logs


class AuditLogListView(CallerMixin, APIView):
    """
    GET /api/audit/logs/

    Query Parameters:
    - farmer: farmer id (regulators and vets)
    - event_type, entity_type
    - start_date / end_date: YYYY-MM-DD
    """

    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        params = request.query_params
        try:
            start_date = parse_date(params.get('start_date'), 'start date')
            end_date = parse_date(params.get('end_date'), 'end date')
        except ServiceError as exc:
            return error_response(exc)

        if self.caller.is_farmer:
            logs = get_farm_audit_logs(
                self.caller.user,
                event_type=params.get('event_type'),
                entity_type=params.get('entity_type'),
                start_date=start_date,
                end_date=end_date,
            )
        else:
            logs = _visible_logs(self.caller, AuditLog.objects.select_related('performed_by'))
            if params.get('farmer'):
                try:
                    logs = logs.filter(farmer_id=params['farmer'])
                except ValidationError:
                    return Response({'error': 'Invalid farmer id'}, status=status.HTTP_400_BAD_REQUEST)
            if params.get('event_type'):
                logs = logs.filter(event_type=params['event_type'])
            if params.get('entity_type'):
                logs = logs.filter(entity_type=params['entity_type'])
            if start_date:
                logs = logs.filter(timestamp__date__gte=start_date)
            if end_date:
                logs = logs.filter(timestamp__date__lte=end_date)
            logs = logs.order_by('-id')

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)
        if page is not None:
            return Response(paginator.get_paginated_response_data(AuditLogSerializer(page, many=True).data))

        data = AuditLogSerializer(logs, many=True).data
        return Response({'results': data, 'count': len(data)})


class AuditTrailView(CallerMixin, APIView):
    """GET /api/audit/trail/<entity_type>/<entity_id>/ - Entity history, oldest first"""

    permission_classes = [IsAuthenticated]

    def get(self, request, entity_type, entity_id):
        if entity_type not in AuditLog.EntityType.values:
            return Response({'error': f"Unknown entity type: {entity_type}"}, status=status.HTTP_400_BAD_REQUEST)

        logs = _visible_logs(self.caller, get_audit_trail(entity_type, entity_id))
        data = AuditLogSerializer(logs, many=True).data
        return Response({
            'entity_type': entity_type,
            'entity_id': entity_id,
            'results': data,
            'count': len(data),
        })


class VerifyEntityIntegrityView(APIView):
    """GET /api/audit/verify/<entity_type>/<entity_id>/ - Regulator only"""

    permission_classes = [IsAuthenticated, IsRegulator]

    def get(self, request, entity_type, entity_id):
        if entity_type not in AuditLog.EntityType.values:
            return Response({'error': f"Unknown entity type: {entity_type}"}, status=status.HTTP_400_BAD_REQUEST)
        return Response({
            'entity_type': entity_type,
            'entity_id': entity_id,
            **verify_integrity(entity_type, entity_id),
        })


class VerifyFarmIntegrityView(APIView):
    """GET /api/audit/verify/farm/<farmer_id>/ - Regulator only"""

    permission_classes = [IsAuthenticated, IsRegulator]

    def get(self, request, farmer_id):
        farmer = get_user_model().objects.filter(pk=farmer_id).first()
        if farmer is None:
            return Response({'error': 'Farmer not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response({'farmer_id': str(farmer.pk), **verify_farm_integrity(farmer)})

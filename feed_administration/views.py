"""
Feed Administration API Views

Thin HTTP layer over FeedAdministrationWorkflowService. Every mutating view
builds the caller once (CallerMixin), hands it to the service and maps
ServiceError subclasses to their status codes.
"""

from django.core.exceptions import ValidationError
from django.utils import timezone
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.identity import CallerMixin
from accounts.permissions import IsVeterinarian
from animals.models import Animal
from core.exceptions import NotFound, PermissionDenied, ServiceError, error_response
from core.pagination import StandardResultsSetPagination

from .filters import FeedAdministrationFilter
from .models import FeedAdministration
from .serializers import (
    AdministrationDocumentSerializer,
    FeedAdministrationSerializer,
    PrescriptionSerializer,
)
from .services.workflow import FeedAdministrationWorkflowService, parse_date


def _records(queryset):
    return queryset.select_related('farmer', 'feed', 'vet').prefetch_related('animals')


class WorkflowViewMixin(CallerMixin):
    permission_classes = [IsAuthenticated]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.workflow = FeedAdministrationWorkflowService()

    def _get_visible_record(self, record_id):
        try:
            record = _records(FeedAdministration.objects).get(pk=record_id)
        except (FeedAdministration.DoesNotExist, ValidationError, ValueError):
            raise NotFound('Feed administration not found')
        if not self.workflow.can_view(self.caller, record):
            raise PermissionDenied('Not authorized to view this administration')
        return record

    def _detail(self, record):
        data = FeedAdministrationSerializer(record).data
        if hasattr(record, 'prescription'):
            data['prescription'] = PrescriptionSerializer(record.prescription).data
        return data


class FeedAdministrationListView(WorkflowViewMixin, generics.ListAPIView):
    """
    GET  /api/feed-admin/ - List feed administrations visible to the caller

    Query Parameters:
    - status: Pending Approval | Active | Rejected | Completed
    - animal_id: 12-digit tag
    - start_date / end_date: range on the program start date
    - search: feed name, group name or antimicrobial

    POST /api/feed-admin/ - Record a feed administration (farmer)
    """

    serializer_class = FeedAdministrationSerializer
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = FeedAdministrationFilter
    search_fields = ['feed__feed_name', 'group_name', 'feed__antimicrobial_name']
    ordering_fields = ['start_date', 'created_at', 'withdrawal_end_date', 'status']
    ordering = ['-start_date', '-created_at']

    def get_queryset(self):
        return _records(self.workflow.scope(self.caller))

    def post(self, request):
        try:
            record = self.workflow.create_administration(self.caller, request.data)
        except ServiceError as exc:
            return error_response(exc)

        record = _records(FeedAdministration.objects).get(pk=record.pk)
        if record.status == FeedAdministration.Status.PENDING_APPROVAL:
            message = 'Feed administration recorded and sent for veterinary approval'
        else:
            message = 'Feed administration recorded successfully'
        return Response(
            {
                'success': True,
                'message': message,
                'feed_administration': self._detail(record),
            },
            status=status.HTTP_201_CREATED,
        )


class FeedAdministrationDetailView(WorkflowViewMixin, APIView):
    """
    GET    /api/feed-admin/<id>/
    PUT    /api/feed-admin/<id>/ - Update descriptive fields
    DELETE /api/feed-admin/<id>/ - Withdraw a pending administration (farmer)
    """

    def get(self, request, record_id):
        try:
            record = self._get_visible_record(record_id)
        except ServiceError as exc:
            return error_response(exc)
        return Response(self._detail(record))

    def put(self, request, record_id):
        try:
            record = self.workflow.update(self.caller, record_id, request.data)
        except ServiceError as exc:
            return error_response(exc)
        record = _records(FeedAdministration.objects).get(pk=record.pk)
        return Response({
            'success': True,
            'message': 'Feed administration updated successfully',
            'feed_administration': self._detail(record),
        })

    def delete(self, request, record_id):
        try:
            self.workflow.delete(self.caller, record_id)
        except ServiceError as exc:
            return error_response(exc)
        return Response({'success': True, 'message': 'Feed administration deleted and feed stock restored'})


class TransitionView(WorkflowViewMixin, APIView):
    """Base for POST /api/feed-admin/<id>/<transition>/ endpoints."""

    success_message = ''

    def perform(self, request, record_id):
        raise NotImplementedError

    def post(self, request, record_id):
        try:
            record = self.perform(request, record_id)
        except ServiceError as exc:
            return error_response(exc)
        record = _records(FeedAdministration.objects).get(pk=record.pk)
        return Response({
            'success': True,
            'message': self.success_message,
            'feed_administration': self._detail(record),
        })


class CompleteAdministrationView(TransitionView):
    """POST /api/feed-admin/<id>/complete/ - Farmer ends an active program"""

    success_message = 'Feeding program completed'

    def perform(self, request, record_id):
        return self.workflow.complete(self.caller, record_id, end_date=request.data.get('end_date'))


class ApproveAdministrationView(TransitionView):
    """POST /api/feed-admin/<id>/approve/ - Vet approval"""

    success_message = 'Feed administration approved and prescription issued'

    def perform(self, request, record_id):
        return self.workflow.approve(self.caller, record_id, notes=request.data.get('notes', '') or '')


class RejectAdministrationView(TransitionView):
    """POST /api/feed-admin/<id>/reject/ - Vet rejection, stock is restored"""

    success_message = 'Feed administration rejected and feed stock restored'

    def perform(self, request, record_id):
        return self.workflow.reject(self.caller, record_id, request.data.get('reason', ''))


class ActiveProgramsView(WorkflowViewMixin, APIView):
    """GET /api/feed-admin/active/"""

    def get(self, request):
        records = _records(self.workflow.active_programs(self.caller)).order_by('-start_date')
        data = FeedAdministrationSerializer(records, many=True).data
        return Response({'results': data, 'count': len(data)})


class WithdrawalStatusView(WorkflowViewMixin, APIView):
    """
    GET /api/feed-admin/withdrawal-status/

    Records still inside their withdrawal period, with days remaining, and
    the caller's animals currently flagged in withdrawal.
    """

    def get(self, request):
        records = _records(self.workflow.withdrawal_status(self.caller))
        animals = Animal.objects.filter(in_withdrawal=True).order_by('withdrawal_end_date')
        if self.caller.is_farmer:
            animals = animals.filter(farmer=self.caller.user)
        elif self.caller.is_veterinarian:
            animals = animals.filter(farmer__assigned_vet=self.caller.user)

        today = timezone.localdate()
        return Response({
            'records': [
                {
                    'id': str(record.id),
                    'feed_name': record.feed.feed_name,
                    'antimicrobial_name': record.feed.antimicrobial_name,
                    'animal_ids': record.animal_ids,
                    'status': record.status,
                    'withdrawal_end_date': record.withdrawal_end_date.isoformat(),
                    'days_remaining': record.days_until_withdrawal_end,
                }
                for record in records
            ],
            'animals_in_withdrawal': [
                {
                    'tag_id': animal.tag_id,
                    'name': animal.name,
                    'withdrawal_end_date': (
                        animal.withdrawal_end_date.isoformat() if animal.withdrawal_end_date else None
                    ),
                    'days_remaining': (
                        max((animal.withdrawal_end_date - today).days, 0) if animal.withdrawal_end_date else 0
                    ),
                }
                for animal in animals
            ],
        })


class PendingApprovalView(WorkflowViewMixin, APIView):
    """GET /api/feed-admin/pending/ - A vet's approval queue"""

    permission_classes = [IsAuthenticated, IsVeterinarian]

    def get(self, request):
        try:
            records = _records(self.workflow.pending_for_vet(self.caller))
        except ServiceError as exc:
            return error_response(exc)
        data = FeedAdministrationSerializer(records, many=True).data
        return Response({'results': data, 'count': len(data)})


class AnimalHistoryView(WorkflowViewMixin, APIView):
    """GET /api/feed-admin/animal/<tag_id>/ - Feed history of one animal, newest first"""

    def get(self, request, tag_id):
        records = _records(self.workflow.animal_history(self.caller, tag_id))
        data = FeedAdministrationSerializer(records, many=True).data
        return Response({'tag_id': tag_id, 'results': data, 'count': len(data)})


class AMUSummaryView(WorkflowViewMixin, APIView):
    """
    GET /api/feed-admin/amu-summary/?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD

    Antimicrobial use from medicated feed, total and per active ingredient.
    """

    def get(self, request):
        try:
            start_date = parse_date(request.query_params.get('start_date'), 'start date')
            end_date = parse_date(request.query_params.get('end_date'), 'end date')
        except ServiceError as exc:
            return error_response(exc)

        summary = self.workflow.amu_summary(self.caller, start_date=start_date, end_date=end_date)
        return Response({
            'start_date': start_date.isoformat() if start_date else None,
            'end_date': end_date.isoformat() if end_date else None,
            **summary,
        })


class AdministrationDocumentsView(WorkflowViewMixin, APIView):
    """GET /api/feed-admin/<id>/documents/"""

    def get(self, request, record_id):
        try:
            record = self._get_visible_record(record_id)
        except ServiceError as exc:
            return error_response(exc)
        documents = record.documents.all()
        return Response({
            'results': AdministrationDocumentSerializer(documents, many=True, context={'request': request}).data,
            'email_error': record.email_error,
            'document_error': record.document_error,
        })

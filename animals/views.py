"""
Animal Registry API Views
"""

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.identity import CallerMixin
from audit.models import AuditLog
from audit.services import create_audit_log
from core.exceptions import NotFound, PermissionDenied, ServiceError, error_response
from core.pagination import StandardResultsSetPagination

from .models import Animal, MRLTest
from .serializers import AnimalSerializer, MRLTestSerializer
from .services import lab_tests
from .services.mrl_status import calculate_animal_mrl_status


class AnimalScopeMixin(CallerMixin):
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        animals = Animal.objects.select_related('farmer')
        if self.caller.is_farmer:
            return animals.filter(farmer=self.caller.user)
        if self.caller.is_veterinarian:
            return animals.filter(farmer__assigned_vet=self.caller.user)
        return animals

    def _get_animal(self, tag_id):
        animal = Animal.objects.select_related('farmer').filter(tag_id=tag_id).first()
        if animal is None:
            raise NotFound('Animal not found')
        if not self.get_queryset().filter(pk=animal.pk).exists():
            raise PermissionDenied('Not authorized to view this animal')
        return animal


class AnimalListView(AnimalScopeMixin, generics.ListCreateAPIView):
    """
    GET  /api/animals/ - List animals visible to the caller
    POST /api/animals/ - Register an animal (farmer)
    """

    serializer_class = AnimalSerializer
    pagination_class = StandardResultsSetPagination
    filterset_fields = ['species', 'status', 'in_withdrawal', 'mrl_status']
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['tag_id', 'name']
    ordering = ['tag_id']

    def create(self, request, *args, **kwargs):
        if not self.caller.is_farmer:
            return error_response(PermissionDenied('Only farmers can register animals'))

        serializer = self.get_serializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'error': 'Validation failed', 'fields': serializer.errors},
                status=status.HTTP_400_BAD_REQUEST
            )
        animal = serializer.save(farmer=request.user)

        create_audit_log(
            event_type=AuditLog.EventType.CREATE,
            entity_type=AuditLog.EntityType.ANIMAL,
            entity_id=animal.id,
            farmer=request.user,
            performed_by=request.user,
            performed_by_role=self.caller.role,
            data_snapshot=AnimalSerializer(animal).data,
        )
        return Response(
            {
                'success': True,
                'message': 'Animal registered successfully',
                'animal': AnimalSerializer(animal).data,
            },
            status=status.HTTP_201_CREATED,
        )


class AnimalDetailView(AnimalScopeMixin, APIView):
    """GET /api/animals/<tag_id>/"""

    def get(self, request, tag_id):
        try:
            animal = self._get_animal(tag_id)
        except ServiceError as exc:
            return error_response(exc)
        return Response(AnimalSerializer(animal).data)


class AnimalMRLStatusView(AnimalScopeMixin, APIView):
    """
    GET /api/animals/<tag_id>/mrl-status/

    Current residue status and whether the animal may receive medicated feed.
    """

    def get(self, request, tag_id):
        from feed_administration.services.eligibility import ELIGIBLE_STATUSES

        try:
            animal = self._get_animal(tag_id)
        except ServiceError as exc:
            return error_response(exc)

        result = calculate_animal_mrl_status(animal, animal.farmer)
        return Response({
            'tag_id': animal.tag_id,
            'mrl_status': result['mrl_status'],
            'status_message': result['status_message'],
            'withdrawal_end_date': (
                animal.withdrawal_end_date.isoformat() if animal.withdrawal_end_date else None
            ),
            'eligible_for_medicated_feed': result['mrl_status'] in ELIGIBLE_STATUSES,
        })


class AnimalMRLTestView(AnimalScopeMixin, APIView):
    """
    GET  /api/animals/<tag_id>/mrl-tests/ - Lab test history, newest first
    POST /api/animals/<tag_id>/mrl-tests/ - Record a lab result (owning farmer)
    """

    def get(self, request, tag_id):
        try:
            animal = self._get_animal(tag_id)
        except ServiceError as exc:
            return error_response(exc)
        data = MRLTestSerializer(animal.mrl_tests.select_related('animal', 'reviewed_by'), many=True).data
        return Response({'tag_id': animal.tag_id, 'results': data, 'count': len(data)})

    def post(self, request, tag_id):
        try:
            animal = self._get_animal(tag_id)
            serializer = MRLTestSerializer(data=request.data)
            if not serializer.is_valid():
                return Response(
                    {'error': 'Validation failed', 'fields': serializer.errors},
                    status=status.HTTP_400_BAD_REQUEST
                )
            test = lab_tests.record_mrl_test(self.caller, animal, serializer.validated_data)
        except ServiceError as exc:
            return error_response(exc)

        result = calculate_animal_mrl_status(test.animal, test.animal.farmer)
        return Response(
            {
                'success': True,
                'message': 'MRL test recorded successfully',
                'mrl_test': MRLTestSerializer(test).data,
                'mrl_status': result['mrl_status'],
            },
            status=status.HTTP_201_CREATED,
        )


class MRLTestListView(CallerMixin, generics.ListAPIView):
    """
    GET /api/animals/mrl-tests/ - Lab tests visible to the caller

    Regulators use ``?status=Pending Verification`` as their review queue.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = MRLTestSerializer
    pagination_class = StandardResultsSetPagination
    filterset_fields = ['status', 'is_passed', 'violation_resolved']
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    ordering = ['-test_date', '-created_at']

    def get_queryset(self):
        tests = MRLTest.objects.select_related('animal', 'reviewed_by')
        if self.caller.is_farmer:
            return tests.filter(animal__farmer=self.caller.user)
        if self.caller.is_veterinarian:
            return tests.filter(animal__farmer__assigned_vet=self.caller.user)
        return tests


class MRLTestReviewView(CallerMixin, APIView):
    """
    POST /api/animals/mrl-tests/<test_id>/review/ - Regulator review

    Body: {"action": "approve" | "reject" | "resolve", "notes": "..."}
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, test_id):
        try:
            test = lab_tests.review_mrl_test(
                self.caller,
                test_id,
                request.data.get('action'),
                request.data.get('notes', ''),
            )
        except ServiceError as exc:
            return error_response(exc)

        result = calculate_animal_mrl_status(test.animal, test.animal.farmer)
        return Response({
            'success': True,
            'message': 'MRL test reviewed successfully',
            'mrl_test': MRLTestSerializer(test).data,
            'mrl_status': result['mrl_status'],
        })

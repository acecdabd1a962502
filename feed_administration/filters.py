import django_filters

from .models import FeedAdministration


class FeedAdministrationFilter(django_filters.FilterSet):
    """Query filters for the feed administration list."""

    status = django_filters.ChoiceFilter(choices=FeedAdministration.Status.choices)
    animal_id = django_filters.CharFilter(field_name='animals__tag_id', distinct=True)
    feed = django_filters.UUIDFilter(field_name='feed_id')
    start_date = django_filters.DateFilter(field_name='start_date', lookup_expr='gte')
    end_date = django_filters.DateFilter(field_name='start_date', lookup_expr='lte')
    medicated = django_filters.BooleanFilter(field_name='feed__prescription_required')

    class Meta:
        model = FeedAdministration
        fields = ['status', 'animal_id', 'feed', 'start_date', 'end_date', 'medicated']

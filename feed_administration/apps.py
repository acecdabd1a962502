"""
Feed Administration App Configuration
Medicated feed workflow: farmer records, vet approval, withdrawal tracking
"""
from django.apps import AppConfig


class FeedAdministrationConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'feed_administration'
    verbose_name = 'Feed Administration'

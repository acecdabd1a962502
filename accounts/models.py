from django.contrib.auth.models import AbstractUser
from django.db import models
from phonenumber_field.modelfields import PhoneNumberField
import uuid


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    A single account table serves all three actor types of the AMU system:
    farmers record feed administrations, veterinarians approve or reject them,
    regulators audit the compliance trail.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class UserRole(models.TextChoices):
        FARMER = 'FARMER', 'Farmer'
        VETERINARIAN = 'VETERINARIAN', 'Veterinarian'
        REGULATOR = 'REGULATOR', 'Regulator'

    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.FARMER,
        db_index=True,
        help_text="User's role in the system"
    )

    phone = PhoneNumberField(
        blank=True,
        help_text="Contact phone number (international format)"
    )

    # Farmer profile
    farm_name = models.CharField(
        max_length=200,
        blank=True,
        help_text="Farm name (farmers only)"
    )
    assigned_vet = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='supervised_farmers',
        limit_choices_to={'role': 'VETERINARIAN'},
        help_text="Veterinarian supervising this farmer's antimicrobial use"
    )

    # Veterinarian profile
    vet_code = models.CharField(
        max_length=20,
        unique=True,
        null=True,
        blank=True,
        help_text="Unique veterinarian code shared with farmers for linking"
    )
    license_number = models.CharField(
        max_length=50,
        blank=True,
        help_text="Veterinary council license number"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        ordering = ['-date_joined']
        indexes = [
            models.Index(fields=['role']),
        ]

    def __str__(self):
        return f"{self.get_full_name() or self.username} ({self.get_role_display()})"

    def get_full_name(self):
        """Return the user's full name."""
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.username

    @property
    def is_farmer(self):
        return self.role == self.UserRole.FARMER

    @property
    def is_veterinarian(self):
        return self.role == self.UserRole.VETERINARIAN

    @property
    def is_regulator(self):
        return self.role == self.UserRole.REGULATOR

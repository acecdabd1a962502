"""
Animal Registry Models

Animals are identified by a 12-digit ear tag. Besides identity, an animal
carries the residue-related flags the feed administration workflow reads
and writes:

    - is_new: freshly registered, no medication history yet
    - mrl_status: latest laboratory MRL verdict
    - in_withdrawal / withdrawal_end_date: set when a medicated feed
      administration is approved
    - requires_mrl_test: set when a withdrawal period ends, cleared when an
      MRL lab test is recorded

MRL lab tests record residue results; a regulator verifies passed tests and
resolves violations.
"""

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models
from django.utils import timezone


class Animal(models.Model):
    """A single tagged animal owned by a farmer."""

    class Species(models.TextChoices):
        CATTLE = 'Cattle', 'Cattle'
        SHEEP = 'Sheep', 'Sheep'
        GOAT = 'Goat', 'Goat'
        PIG = 'Pig', 'Pig'
        POULTRY = 'Poultry', 'Poultry'
        OTHER = 'Other', 'Other'

    class Gender(models.TextChoices):
        MALE = 'Male', 'Male'
        FEMALE = 'Female', 'Female'

    class Status(models.TextChoices):
        ACTIVE = 'Active', 'Active'
        SOLD = 'Sold', 'Sold'
        DECEASED = 'Deceased', 'Deceased'

    class MRLStatus(models.TextChoices):
        SAFE = 'SAFE', 'Safe'
        TEST_REQUIRED = 'TEST_REQUIRED', 'Test Required'
        PENDING_VERIFICATION = 'PENDING_VERIFICATION', 'Pending Verification'
        VIOLATION = 'VIOLATION', 'Violation'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    farmer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='animals',
        help_text="Owning farmer"
    )
    tag_id = models.CharField(
        max_length=12,
        unique=True,
        validators=[RegexValidator(r'^\d{12}$', 'Tag ID must be exactly 12 digits')],
        help_text="12-digit ear tag number"
    )
    name = models.CharField(max_length=100, blank=True, help_text="Optional animal name")
    species = models.CharField(max_length=20, choices=Species.choices, help_text="Animal species")
    gender = models.CharField(max_length=10, choices=Gender.choices, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    weight_kg = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Latest recorded weight in kg"
    )
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE)

    # Residue status
    mrl_status = models.CharField(
        max_length=25,
        choices=MRLStatus.choices,
        default=MRLStatus.SAFE,
        help_text="Latest laboratory MRL verdict"
    )
    is_new = models.BooleanField(
        default=True,
        help_text="Newly registered animal with no treatment or feed history"
    )
    in_withdrawal = models.BooleanField(
        default=False,
        help_text="Animal is inside an antimicrobial withdrawal period"
    )
    withdrawal_end_date = models.DateField(
        null=True,
        blank=True,
        help_text="When the current withdrawal period ends"
    )
    requires_mrl_test = models.BooleanField(
        default=False,
        help_text="Withdrawal ended; an MRL lab test is required before sale"
    )
    active_feed_administrations = models.ManyToManyField(
        'feed_administration.FeedAdministration',
        blank=True,
        related_name='animals_in_withdrawal',
        help_text="Approved medicated feed programs keeping this animal in withdrawal"
    )

    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['tag_id']
        verbose_name = 'Animal'
        verbose_name_plural = 'Animals'
        indexes = [
            models.Index(fields=['farmer', 'status']),
            models.Index(fields=['in_withdrawal', 'withdrawal_end_date']),
        ]

    def __str__(self):
        return f"{self.tag_id} ({self.name or self.species})"

    def clean(self):
        errors = {}
        if self.date_of_birth and self.date_of_birth > timezone.localdate():
            errors['date_of_birth'] = 'Date of birth cannot be in the future'
        if self.in_withdrawal and not self.withdrawal_end_date:
            errors['withdrawal_end_date'] = 'Withdrawal end date is required while in withdrawal'
        if errors:
            raise ValidationError(errors)

    @property
    def is_withdrawal_active(self):
        return bool(
            self.in_withdrawal
            and self.withdrawal_end_date
            and self.withdrawal_end_date > timezone.localdate()
        )


class MRLTest(models.Model):
    """
    Laboratory residue test for one animal.

    A test passes when the detected residue is at or below the MRL threshold.
    Passed tests wait for regulator verification; failed tests stand as a
    violation until a regulator marks them resolved.
    """

    class SampleType(models.TextChoices):
        MILK = 'Milk', 'Milk'
        BLOOD = 'Blood', 'Blood'
        MEAT = 'Meat', 'Meat'
        TISSUE = 'Tissue', 'Tissue'
        URINE = 'Urine', 'Urine'
        EGGS = 'Eggs', 'Eggs'
        OTHER = 'Other', 'Other'

    class ResidueUnit(models.TextChoices):
        UG_PER_KG = 'µg/kg', 'µg/kg'
        PPB = 'ppb', 'ppb'
        MG_PER_KG = 'mg/kg', 'mg/kg'
        PPM = 'ppm', 'ppm'

    class Status(models.TextChoices):
        PENDING_VERIFICATION = 'Pending Verification', 'Pending Verification'
        APPROVED = 'Approved', 'Approved'
        REJECTED = 'Rejected', 'Rejected'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    animal = models.ForeignKey(Animal, on_delete=models.CASCADE, related_name='mrl_tests')
    drug_name = models.CharField(max_length=200, help_text="Antimicrobial tested for")
    sample_type = models.CharField(max_length=10, choices=SampleType.choices)
    residue_level = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Residue level detected"
    )
    mrl_threshold = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Applicable MRL limit at the time of testing"
    )
    unit = models.CharField(max_length=10, choices=ResidueUnit.choices, default=ResidueUnit.UG_PER_KG)
    test_date = models.DateField()
    lab_name = models.CharField(max_length=200)
    test_report_number = models.CharField(max_length=100)
    is_passed = models.BooleanField()

    status = models.CharField(max_length=25, choices=Status.choices, default=Status.PENDING_VERIFICATION)
    violation_resolved = models.BooleanField(default=False)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_mrl_tests'
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_notes = models.TextField(blank=True)

    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='recorded_mrl_tests'
    )
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-test_date', '-created_at']
        verbose_name = 'MRL Test'
        verbose_name_plural = 'MRL Tests'
        indexes = [
            models.Index(fields=['animal', '-test_date']),
        ]

    def __str__(self):
        return f"{self.animal.tag_id} {self.drug_name} {self.test_date} ({'passed' if self.is_passed else 'failed'})"

    def clean(self):
        if self.test_date and self.test_date > timezone.localdate():
            raise ValidationError({'test_date': 'Test date cannot be in the future'})

from django.db import models
from django.utils import timezone


class Professional(models.Model):
    """Service company that can receive mission offers"""
    BUSINESS_TYPE_CHOICES = [
        ('MOVING_COMPANY', 'Moving company'),
        ('CLEANING_SERVICE', 'Cleaning service'),
        ('HANDYMAN', 'Handyman'),
        ('STORAGE_COMPANY', 'Storage company'),
    ]

    company_name = models.CharField(max_length=200)
    business_type = models.CharField(max_length=30, choices=BUSINESS_TYPE_CHOICES, default='MOVING_COMPANY')

    # Contact
    email = models.EmailField()
    phone = models.CharField(max_length=20, blank=True)

    # Registered location (used for distance matching)
    address = models.TextField(null=True, blank=True)
    city = models.CharField(max_length=100, null=True, blank=True)
    postal_code = models.CharField(max_length=10, blank=True)
    latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    # Service coverage: list of ServiceCategory values, own max radius in km
    service_categories = models.JSONField(default=list, blank=True)
    max_distance_km = models.PositiveIntegerField(null=True, blank=True)

    # Eligibility
    verified = models.BooleanField(default=False)
    is_available = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'professionals'
        ordering = ['company_name']

    def __str__(self):
        return f"{self.company_name} ({self.city or 'no city'})"

    def serves(self, category: str) -> bool:
        return category in (self.service_categories or [])

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

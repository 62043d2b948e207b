from django.db import models

from common.utils.categories import ServiceCategory


class Booking(models.Model):
    """Paid customer booking waiting for (or assigned to) a professional"""

    STATUS_CHOICES = [
        ('pending', 'Pending payment'),
        ('paid', 'Paid'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    reference = models.CharField(max_length=30, blank=True)
    service_type = models.CharField(max_length=30, choices=ServiceCategory.choices, default=ServiceCategory.MOVING)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')

    # Customer
    customer_first_name = models.CharField(max_length=100, blank=True)
    customer_last_name = models.CharField(max_length=100, blank=True)
    customer_email = models.EmailField(blank=True)
    customer_phone = models.CharField(max_length=20, blank=True)

    # Service location
    location_address = models.TextField(null=True, blank=True)
    delivery_address = models.TextField(null=True, blank=True)
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    volume_m3 = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)

    scheduled_date = models.DateTimeField(null=True, blank=True)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    additional_info = models.TextField(null=True, blank=True)

    # Assigned by the attribution engine
    professional = models.ForeignKey(
        'professionals.Professional',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='bookings'
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'bookings'
        ordering = ['-created_at']

    def __str__(self):
        return f"Booking {self.display_reference} - {self.status}"

    @property
    def display_reference(self) -> str:
        if self.reference:
            return self.reference
        return f"EQ-{str(self.pk).zfill(8)[-8:].upper()}"

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


CATEGORY_CHOICES = [
    ('MOVING', 'Moving'),
    ('CLEANING', 'Cleaning'),
    ('PACKING', 'Packing'),
    ('DELIVERY', 'Delivery'),
    ('SERVICE', 'Other service'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('bookings', '0001_initial'),
        ('professionals', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Attribution',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category', models.CharField(choices=CATEGORY_CHOICES, max_length=30)),
                ('status', models.CharField(choices=[('BROADCASTING', 'Broadcasting'), ('RE_BROADCASTING', 'Re-broadcasting'), ('ACCEPTED', 'Accepted'), ('EXPIRED', 'Expired')], default='BROADCASTING', max_length=20)),
                ('latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('max_radius_km', models.FloatField(default=150)),
                ('excluded_professional_ids', models.JSONField(blank=True, default=list)),
                ('broadcast_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('last_broadcast_at', models.DateTimeField(blank=True, null=True)),
                ('expired_at', models.DateTimeField(blank=True, null=True)),
                ('accepted_professional', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='accepted_attributions', to='professionals.professional')),
                ('booking', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attributions', to='bookings.booking')),
            ],
            options={
                'db_table': 'booking_attributions',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'created_at'], name='attribution_status_idx')],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('status', 'ACCEPTED'), ('accepted_professional__isnull', False))
                        | models.Q(models.Q(('status', 'ACCEPTED'), _negated=True), ('accepted_professional__isnull', True)),
                        name='accepted_professional_iff_accepted',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='AttributionOffer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('broadcast_round', models.PositiveIntegerField(default=1)),
                ('distance_km', models.FloatField()),
                ('status', models.CharField(choices=[('sent', 'Sent'), ('failed', 'Delivery failed')], default='sent', max_length=10)),
                ('error', models.TextField(blank=True)),
                ('sent_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('attribution', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='attribution.attribution')),
                ('professional', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attribution_offers', to='professionals.professional')),
            ],
            options={
                'ordering': ['broadcast_round', 'distance_km'],
                'constraints': [models.UniqueConstraint(fields=('attribution', 'professional', 'broadcast_round'), name='unique_attribution_offer_round')],
            },
        ),
        migrations.CreateModel(
            name='AttributionResponse',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('response_type', models.CharField(choices=[('ACCEPTED', 'Accepted'), ('REFUSED', 'Refused'), ('CANCELLED', 'Cancelled after acceptance')], max_length=10)),
                ('reason', models.TextField(blank=True, null=True)),
                ('responded_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('attribution', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='responses', to='attribution.attribution')),
                ('professional', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attribution_responses', to='professionals.professional')),
            ],
            options={
                'db_table': 'attribution_responses',
                'ordering': ['-responded_at', '-id'],
            },
        ),
        migrations.CreateModel(
            name='PenaltyRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category', models.CharField(choices=CATEGORY_CHOICES, max_length=30)),
                ('consecutive_refusals', models.PositiveIntegerField(default=0)),
                ('total_refusals', models.PositiveIntegerField(default=0)),
                ('blacklisted', models.BooleanField(default=False)),
                ('blacklisted_at', models.DateTimeField(blank=True, null=True)),
                ('last_offence_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('last_attribution', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='attribution.attribution')),
                ('professional', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='penalty_records', to='professionals.professional')),
            ],
            options={
                'db_table': 'professional_penalties',
                'ordering': ['-blacklisted_at', 'professional_id'],
                'constraints': [models.UniqueConstraint(fields=('professional', 'category'), name='unique_professional_category_penalty')],
            },
        ),
    ]

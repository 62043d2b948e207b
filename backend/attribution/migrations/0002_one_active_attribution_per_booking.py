from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('attribution', '0001_initial'),
    ]

    operations = [
        migrations.AddConstraint(
            model_name='attribution',
            constraint=models.UniqueConstraint(
                condition=models.Q(('status__in', ['BROADCASTING', 'RE_BROADCASTING', 'ACCEPTED'])),
                fields=('booking',),
                name='one_active_attribution_per_booking',
            ),
        ),
    ]

"""
Add celery-beat schedule for sweeping stale online payments.

sweep_stale_payments runs every 15 minutes and queues a reconciliation
for every online payment stuck in PROCESSING.
"""

from django.db import migrations

TASK_NAME = "Sweep Stale Online Payments"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the stale payment sweep."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "billing.tasks.sweep_stale_payments",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Queries the gateway for online payments stuck in PROCESSING "
                "and settles or expires them."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]

"""
Add celery-beat schedule for capturing due service-amount authorizations.

This migration creates the periodic task schedule for the
capture_due_payments task, which runs every 15 minutes to capture
authorizations whose service starts within the capture cutoff.
"""

from django.db import migrations


TASK_NAME = "Capture Due Service Payments"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the capture sweep."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # Create interval schedule: every 15 minutes
    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "payments.workers.capture_sweeper.capture_due_payments",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Claims due PaymentSchedules and captures their service-amount "
                "authorizations. Failed schedules are not retried automatically."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]

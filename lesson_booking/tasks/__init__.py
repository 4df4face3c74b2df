# lesson_booking/tasks/__init__.py
"""
Celery tasks for the booking engine.

Import ``lesson_booking.tasks.outbox_tasks`` to register the tasks.
"""

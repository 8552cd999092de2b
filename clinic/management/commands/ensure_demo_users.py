from django.core.management.base import BaseCommand
from django.db import transaction

from clinic.models import Center, User

DEMO_CENTER = ("demo", "Demo Medical Center")
DEMO_USERS = [
    ("admin1", User.ROLE_ADMIN),
    ("doctor1", User.ROLE_DOCTOR),
    ("reception1", User.ROLE_RECEPTION),
    ("staff1", User.ROLE_STAFF),
    ("supervisor1", User.ROLE_SUPERVISOR),
    ("patient1", User.ROLE_PATIENT),
    ("guardian1", User.ROLE_GUARDIAN),
]


class Command(BaseCommand):
    help = "Ensure the demo center and one user per role exist (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="demo12345", help="Password set on every demo user.")
        parser.add_argument("--center", default=DEMO_CENTER[0], help="Center id for the demo users.")

    @transaction.atomic
    def handle(self, *args, **opts):
        center, _ = Center.objects.get_or_create(id=opts["center"], defaults={"name": DEMO_CENTER[1]})
        for username, role in DEMO_USERS:
            user, created = User.objects.get_or_create(
                username=username, defaults={"role": role, "center": center, "is_active": True},
            )
            # reset role, center and password on every run
            user.role = role
            user.center = center
            user.is_active = True
            user.set_password(opts["password"])
            user.save()
            self.stdout.write(self.style.SUCCESS(f"{'created' if created else 'ok'}: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS(f"Demo users ready in center {center.id}."))

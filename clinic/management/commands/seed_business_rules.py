from django.core.management.base import BaseCommand

from clinic.models import BusinessRule
from clinic.services.rules import DEFAULT_RULES, rules_engine


class Command(BaseCommand):
    help = "Install the default payment rules unless rules already exist."

    def add_arguments(self, parser):
        parser.add_argument("--force", action="store_true", help="Install even when rules exist.")

    def handle(self, *args, **opts):
        if BusinessRule.objects.exists() and not opts["force"]:
            self.stdout.write("Business rules already present, nothing to do.")
            return
        created = 0
        for rule in DEFAULT_RULES:
            _, was_created = BusinessRule.objects.get_or_create(
                name=rule["name"],
                center=None,
                defaults={
                    "description": rule["description"],
                    "rule_type": rule["rule_type"],
                    "condition": rule["condition"],
                    "action": rule["action"],
                    "priority": rule["priority"],
                    "applies_to": rule["applies_to"],
                    "error_message": rule["error_message"],
                },
            )
            created += was_created
        rules_engine.invalidate()
        self.stdout.write(self.style.SUCCESS(f"Installed {created} business rule(s)."))

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand, CommandError

from operator_core.permissions import OPERATOR_ADMIN, OPERATOR_ROLES


class Command(BaseCommand):
    help = "Create the operator role groups and optionally grant one of them to a staff user."

    def add_arguments(self, parser):
        parser.add_argument("--assign-email", dest="assign_email", help="Email of the user to grant.")
        parser.add_argument(
            "--role",
            dest="role",
            default=OPERATOR_ADMIN,
            choices=OPERATOR_ROLES,
            help="Role to grant (default: operator_admin).",
        )

    def handle(self, *args, **options):
        created = [name for name in OPERATOR_ROLES if Group.objects.get_or_create(name=name)[1]]
        if created:
            self.stdout.write(self.style.SUCCESS(f"Created groups: {', '.join(created)}"))
        else:
            self.stdout.write("Operator groups already exist.")

        email = options.get("assign_email")
        if not email:
            return

        User = get_user_model()
        try:
            user = User.objects.get(email=email)
        except User.DoesNotExist:
            raise CommandError(f"No user with email {email}.")

        user.is_staff = True
        user.save(update_fields=["is_staff"])
        user.groups.add(Group.objects.get(name=options["role"]))
        self.stdout.write(self.style.SUCCESS(f"Granted {options['role']} to {user}."))

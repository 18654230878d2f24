# ops/management/commands/ensure_test_users.py
from django.core.management.base import BaseCommand
from django.contrib.auth.hashers import make_password
from ops.models import Team, User

TEST_SET = [
    ("md1", User.ROLE_MD),
    ("saleshead1", User.ROLE_SALES_HEAD),
    ("teamlead1", User.ROLE_TEAM_LEAD),
    ("bd1", User.ROLE_BD),
    ("insurance1", User.ROLE_INSURANCE_HEAD),
    ("pl1", User.ROLE_PL_HEAD),
    ("hr1", User.ROLE_HR_HEAD),
    ("finance1", User.ROLE_FINANCE_HEAD),
    ("admin1", User.ROLE_ADMIN),
]

TEAM_ROLES = {User.ROLE_SALES_HEAD, User.ROLE_TEAM_LEAD, User.ROLE_BD}


class Command(BaseCommand):
    help = "Ensure one test user per role exists with password=123456 (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="123456")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        team, _ = Team.objects.get_or_create(name="Test Team")
        for username, role in TEST_SET:
            team_id = team.id if role in TEAM_ROLES else None
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": password, "is_active": True, "team_id": team_id},
            )
            if not created:
                # reset password, role, team and active flag
                u.password = password
                u.role = role
                u.team_id = team_id
                u.is_active = True
                u.save(update_fields=["password", "role", "team", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        if team.sales_head is None:
            team.sales_head = User.objects.get(username="saleshead1")
            team.save(update_fields=["sales_head"])
        self.stdout.write(self.style.SUCCESS("All test users ensured."))

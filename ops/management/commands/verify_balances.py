from django.core.management.base import BaseCommand, CommandError

from ops.models import PaymentMode
from ops.services.balances import verify_balance_integrity


class Command(BaseCommand):
    help = "Check every payment mode's current balance against its approved ledger entries."

    def handle(self, *args, **opts):
        bad = []
        for mode in PaymentMode.objects.order_by("id"):
            result = verify_balance_integrity(mode.id)
            line = (f"{mode.name}: current={result['currentBalance']} "
                    f"expected={result['expectedBalance']} discrepancy={result['discrepancy']}")
            if result["isValid"]:
                self.stdout.write(self.style.SUCCESS(f"ok: {line}"))
            else:
                bad.append(mode.name)
                self.stdout.write(self.style.ERROR(f"MISMATCH: {line}"))
        if bad:
            raise CommandError(f"{len(bad)} payment mode(s) out of balance: {', '.join(bad)}")
        self.stdout.write(self.style.SUCCESS("All payment mode balances verified."))

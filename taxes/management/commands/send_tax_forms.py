"""
Request US tax forms from every account whose payouts crossed a threshold.

Usage:
    python manage.py send_tax_forms
    python manage.py send_tax_forms --year 2024
    python manage.py send_tax_forms --year 2024 --dry-run
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from taxes.helloworks import HelloWorksConfigurationError
from taxes.services import find_accounts_that_need_to_be_sent_tax_form, send_tax_forms_for_year


class Command(BaseCommand):
    help = "Send HelloWorks US tax form requests to the accounts that need one."

    def add_arguments(self, parser):
        parser.add_argument(
            "--year",
            type=int,
            help="Fiscal year to process (defaults to last year).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the accounts that would receive a request without contacting anyone.",
        )

    def handle(self, *args, **options):
        year = options["year"] or timezone.now().year - 1
        accounts = find_accounts_that_need_to_be_sent_tax_form(year)

        if options["dry_run"]:
            self.stdout.write(f"{len(accounts)} account(s) need a tax form for {year}")
            for account in accounts:
                self.stdout.write(f"  #{account.id} @{account.slug} ({account.type})")
            return

        if not accounts:
            self.stdout.write(f"No account needs a tax form for {year}")
            return

        if not getattr(settings, "TAX_FORM_WORKFLOW_ID", ""):
            raise CommandError("TAX_FORM_WORKFLOW_ID is not configured")

        try:
            result = send_tax_forms_for_year(year, accounts=accounts)
        except HelloWorksConfigurationError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Tax forms {year}: {len(result.requested)} requested, "
                f"{len(result.skipped)} skipped, {len(result.failed)} failed"
            )
        )

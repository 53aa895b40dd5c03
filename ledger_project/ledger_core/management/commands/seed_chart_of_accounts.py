from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from ledger_core.models import Company
from ledger_core.services.accounts import seed_chart_of_accounts


class Command(BaseCommand):
    help = (
        "Create the system chart of accounts for a company "
        "(creating the company when --create is given)."
    )

    # Define command-line arguments
    def add_arguments(self, parser):
        parser.add_argument(
            "--company",  # Define flag
            required=True,
            help="Slug or name of the company to seed.",
        )
        parser.add_argument(
            "--create",
            action="store_true",
            help="Create the company if it doesn't exist yet.",
        )
        parser.add_argument(
            "--currency", default="USD", help="Currency code for a new company."
        )

    @transaction.atomic
    def handle(self, *args, **options):
        # Read arguments from add_arguments()
        ident = options["company"]

        company = (
            Company.objects.filter(slug=ident).first()
            or Company.objects.filter(name=ident).first()
        )
        if company is None:
            if not options["create"]:
                raise CommandError(
                    f"Company {ident!r} not found (use --create to add it).")
            # slug is generated from the name on save
            company = Company.objects.create(
                name=ident, currency_code=options["currency"])
            self.stdout.write(
                self.style.SUCCESS(  # make message green
                    f"Created company: {company} ({company.slug})"
                )
            )

        accounts = seed_chart_of_accounts(company)
        for code, account in accounts.items():
            self.stdout.write(f"  {code}  {account.name}")
        self.stdout.write(
            self.style.SUCCESS(
                f"Chart of accounts ready for {company}: {len(accounts)} system accounts"
            )
        )

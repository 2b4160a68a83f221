"""
Management command to create the default vendor data sources.

Usage:
    python manage.py seed_data_sources             # Create missing defaults
    python manage.py seed_data_sources --inactive  # Create them disabled
    python manage.py seed_data_sources --list      # Show what would be created
"""

from django.core.management.base import BaseCommand

from apps.incidents.models import ConnectorType, DataSource

DEFAULT_DATA_SOURCES = [
    {
        "name": "GitHub",
        "connector_type": ConnectorType.GITHUB_STATUS,
        "base_url": "https://www.githubstatus.com",
    },
    {
        "name": "Microsoft Azure",
        "connector_type": ConnectorType.AZURE_STATUS,
        "base_url": "https://status.azure.com",
    },
    {
        "name": "Atlassian",
        "connector_type": ConnectorType.STATUSPAGE,
        "base_url": "https://status.atlassian.com",
    },
]


class Command(BaseCommand):
    help = "Create the default status-page data sources (existing ones are left untouched)"

    def add_arguments(self, parser):
        parser.add_argument(
            "--inactive",
            action="store_true",
            help="Create the sources with is_active=False.",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="List the default sources and exit.",
        )

    def handle(self, *args, **options):
        if options["list"]:
            for entry in DEFAULT_DATA_SOURCES:
                self.stdout.write(f"  {entry['name']:20} {entry['connector_type']:15} {entry['base_url']}")
            return

        created_count = 0
        for entry in DEFAULT_DATA_SOURCES:
            _, created = DataSource.objects.get_or_create(
                name=entry["name"],
                defaults={
                    "connector_type": entry["connector_type"],
                    "base_url": entry["base_url"],
                    "is_active": not options["inactive"],
                },
            )
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"Created {entry['name']}"))
            else:
                self.stdout.write(f"Skipped {entry['name']} (already exists)")

        self.stdout.write(f"\n{created_count} data source(s) created.")

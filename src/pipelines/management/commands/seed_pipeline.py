"""Create the default sales pipeline for a company."""
from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from companies.models import Company
from pipelines.exceptions import PipelineError
from pipelines.services import create_pipeline


class Command(BaseCommand):
    help = "Create the default pipeline (PIPELINE_DEFAULT_STAGES) for a company."

    def add_arguments(self, parser):
        parser.add_argument("domain", help="Domaine de l'entreprise cible.")
        parser.add_argument(
            "--name",
            default="Pipeline commercial",
            help="Nom du pipeline a creer.",
        )

    def handle(self, *args, **options):
        domain = options["domain"].strip().lower()
        company = Company.objects.filter(domain=domain, is_active=True).first()
        if company is None:
            raise CommandError(f"Aucune entreprise active pour le domaine '{domain}'.")

        stages = [
            {"name": name, "order": index}
            for index, name in enumerate(settings.PIPELINE_DEFAULT_STAGES)
        ]
        try:
            pipeline = create_pipeline(company, options["name"], stages)
        except PipelineError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Pipeline '{pipeline.name}' cree pour {company.name} ({len(stages)} etapes)."
            )
        )

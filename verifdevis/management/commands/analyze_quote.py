import json
import logging
from pathlib import Path

from django.core.files import File
from django.core.management.base import BaseCommand, CommandError

from verifdevis.quote_analysis.errors import AnalysisError
from verifdevis.quote_analysis.models import Analysis, AnalysisStatus, Domain
from verifdevis.quote_analysis.pipeline.runner import AnalysisRunner
from verifdevis.quote_analysis.processor.text_extraction import guess_mime_type

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Analyse un devis de façon synchrone (analyse existante ou fichier local)"

    def add_arguments(self, parser):
        parser.add_argument("target", type=str, help="Identifiant d'une analyse ou chemin d'un fichier de devis")
        parser.add_argument("--attestation", type=str, default=None, help="Attestation d'assurance (fichier local)")
        parser.add_argument("--domain", type=str, default=Domain.TRAVAUX, choices=Domain.values)
        parser.add_argument("--json", action="store_true", default=False, help="Affiche le résultat complet en JSON")

    def handle(self, *args, **options):
        target = options["target"]
        path = Path(target)
        if path.is_file():
            analysis = self.create_analysis(path, options["attestation"], options["domain"])
            self.stdout.write(f"Analysis created (id={analysis.id}) for file: {path.name}")
            target = str(analysis.id)

        try:
            analysis = AnalysisRunner().run(target)
        except AnalysisError as e:
            raise CommandError(f"{e.message} ({e.details or e.code})") from e

        if analysis.status != AnalysisStatus.COMPLETED:
            raise CommandError(f"Analysis {analysis.id} failed: {analysis.error_message}")

        self.stdout.write(self.style.SUCCESS(f"Analysis {analysis.id} completed: score {analysis.score}"))
        for line in [*analysis.alertes, *analysis.points_ok, *analysis.recommandations]:
            self.stdout.write(f"  {line}")
        if options["json"]:
            self.stdout.write(json.dumps(analysis.extracted_data, ensure_ascii=False, indent=2, default=str))

    def create_analysis(self, path: Path, attestation_path: str | None, domain: str) -> Analysis:
        analysis = Analysis(filename=path.name, mime_type=guess_mime_type(path.name) or "", domain=domain)
        with path.open("rb") as f:
            analysis.file.save(path.name, File(f), save=False)
        if attestation_path:
            attestation = Path(attestation_path)
            if not attestation.is_file():
                raise CommandError(f"Attestation introuvable : {attestation_path}")
            analysis.attestation_mime_type = guess_mime_type(attestation.name) or ""
            with attestation.open("rb") as f:
                analysis.attestation.save(attestation.name, File(f), save=False)
        analysis.save()
        return analysis

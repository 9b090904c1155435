import logging

from celery import shared_task

from verifdevis.quote_analysis.models import Analysis
from verifdevis.quote_analysis.pipeline.runner import AnalysisRunner

logger = logging.getLogger(__name__)


def launch_analysis(analysis: Analysis):
    """Planifie l'analyse une fois la transaction courante validée."""
    task_analyze_quote.on_commit(str(analysis.id))


@shared_task(name="verifdevis.analyze_quote")
def task_analyze_quote(analysis_id: str) -> str:
    runner = AnalysisRunner()
    analysis = runner.run(analysis_id)
    return analysis.status

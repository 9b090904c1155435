import logging
import os

from django.conf import settings
from django.db import transaction

from celery import Celery, Task, signals

# Même logger que celui utilisé par Celery pour les succès de tâche
logger_celery = logging.getLogger("celery.app.trace")


class BaseTask(Task):
    def on_commit(self, *args, **kwargs):
        """Envoie la tâche après validation de la transaction (immédiatement en test)."""
        if settings.ENV == "test":
            self.delay(*args, **kwargs)
        else:
            transaction.on_commit(lambda: self.delay(*args, **kwargs))


os.environ.setdefault("DJANGO_SETTINGS_MODULE", "verifdevis.settings")

app = Celery("verifdevis", task_cls=BaseTask)

# Clés Celery préfixées par CELERY_ dans les settings Django
app.config_from_object("django.conf:settings", namespace="CELERY")
app.conf.timezone = "Europe/Paris"

app.autodiscover_tasks(["verifdevis.quote_analysis.pipeline"])


@signals.task_prerun.connect()
def task_prerun(task_id, task, **kwargs):
    logger_celery.info("Start task %s args=%s kwargs=%s", task.name, kwargs["args"], kwargs["kwargs"])


@signals.task_postrun.connect()
def task_postrun(task_id, task, retval=None, state=None, **kwargs):
    logger_celery.info("End task %s state=%s result=%s", task.name, state, retval)


@signals.task_failure.connect()
def task_failure(task_id=None, exception=None, sender=None, **kwargs):
    name = sender.name if sender is not None else "?"
    logger_celery.error("Task %s (%s) failed: %r", name, task_id, exception)

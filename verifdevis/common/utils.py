import logging
import re
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def log_execution_time(title, threshold=10):
    """
    Logue la durée d'un bloc de code si elle dépasse un seuil.

    Example:
        with log_execution_time("Pappers lookup", threshold=0.5):
            client.get_company(siret)
    """

    def log(error=None):
        elapsed = time.monotonic() - start_time
        if elapsed > threshold:
            if error:
                logger.warning("%s took %.1f seconds to execute with error: %s", title, elapsed, error)
            else:
                logger.info("%s took %.1f seconds to execute", title, elapsed)

    start_time = time.monotonic()
    try:
        yield
        log()
    except Exception as e:
        log(e)
        raise


def count_words(text):
    """Compte le nombre de mots dans un texte"""
    if not text:
        return 0
    return len(re.findall(r"\w+", text))


def clean_nul_bytes(text: str) -> str:
    """PostgreSQL refuse les octets NUL dans les champs texte."""
    return text.replace("\x00", "")

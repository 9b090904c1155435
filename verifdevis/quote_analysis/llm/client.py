import base64
import json
import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar
from urllib.parse import urljoin

from django.conf import settings

import httpx
from openai import APIError, APIStatusError, OpenAI

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _build_pdf_document_payload(pdf_content: bytes) -> dict:
    """Payload document pour l'API OCR : PDF en base64 (data URI)."""
    b64 = base64.b64encode(pdf_content).decode("utf-8")
    data_uri = f"data:application/pdf;base64,{b64}"
    return {"type": "document_url", "document_url": data_uri}


def _build_image_content(image_content: bytes, mime_type: str) -> dict:
    b64 = base64.b64encode(image_content).decode("utf-8")
    return {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}}


def _extract_markdown_from_ocr_response(response_data: dict) -> str:
    """Extrait le texte markdown de la réponse OCR (toutes les pages)."""
    pages = response_data.get("pages", [])
    total = len(pages)
    parts = []
    for i, page in enumerate(pages, start=1):
        content = (page.get("markdown") or "").strip()
        parts.append(f"[[PAGE {i} / {total}]]\n{content}\n[[FIN PAGE {i} / {total}]]")
    return "\n\n".join(parts).strip()


class LLMApiError(Exception):
    message: str
    code: str
    details: any

    def __init__(self, message: str, *, code: str, details: any):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    @classmethod
    def pretty_code_from_error(cls, e: APIError):
        if isinstance(e, APIStatusError):
            return f"HTTP_{e.status_code}"
        return f"ERROR_{e.__class__.__name__}"

    @classmethod
    def from_api_error(cls, e: APIError):
        code = cls.pretty_code_from_error(e)
        details = e.body if isinstance(e, APIStatusError) else str(e)
        return cls(f"Api Error: {code} - {details}", code=code, details=details)


class LLMClient:
    """
    Client du fournisseur LLM (API compatible OpenAI) : complétion texte,
    lecture d'image (vision) et OCR de PDF.

    Les retries sont gérés ici et non par le client openai : le budget global
    d'une analyse étant de deux minutes, ils restent courts par défaut.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
        ocr_http_client: httpx.Client | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or settings.LLM_API_KEY
        self.base_url = base_url or settings.LLM_BASE_URL
        self.timeout = timeout or settings.LLM_TIMEOUT
        self._ocr_http_client = ocr_http_client

        self.client = OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            http_client=http_client,
            timeout=self.timeout,
            # Disable openai client retry feature, handle retry ourselves
            max_retries=0,
        )

    def _api_call(
        self,
        func_api: Callable[[], T],
        *,
        max_retries: int,
        retry_delay: float,
        retry_short_delay: float,
    ) -> T:
        """Appelle func_api() en boucle avec retry. func_api doit lever LLMApiError en cas d'erreur."""
        for attempt in range(max_retries + 1):
            try:
                return func_api()
            except LLMApiError as e:
                # 429 / 5xx / erreurs réseau → retry. 4xx (ex. 400) = faute client → pas de retry.
                if e.code == "HTTP_429":
                    effective_delay = retry_delay
                elif e.code.startswith("HTTP_5") or e.code.startswith("ERROR_"):
                    effective_delay = retry_short_delay
                else:
                    raise
                if attempt < max_retries:
                    wait_time = effective_delay * (1 + 0.1 * random.random()) * (attempt + 1)
                    logger.warning("%s, wait %.1fs before retry (%d/%d)", e.code, wait_time, attempt + 1, max_retries)
                    time.sleep(wait_time)
                    continue
                raise

    def ask_llm(
        self,
        messages: list[dict],
        model: str,
        response_format: dict = None,
        temperature: float = 0.0,
        max_retries: int | None = None,
        retry_delay: float = 5,
        retry_short_delay: float = 2,
        parse_json: bool = True,
    ) -> str | dict:
        """
        Interroge le LLM avec un prompt système et utilisateur.

        Args:
            messages:
                {"role": "system", "content": "..."},
                {"role": "user", "content": "..."}
            model: Nom du modèle à utiliser (ex. "openweight-medium").
            response_format: Format de réponse à utiliser
            temperature: Température pour la génération (0.0 = déterministe)
            max_retries: Nombre maximum de nouvelles tentatives (défaut: settings.LLM_MAX_RETRIES)
            retry_delay: Délai avant nouvelle tentative après un 429
            retry_short_delay: Délai avant nouvelle tentative après un 5XX ou une erreur réseau
            parse_json: Décoder la réponse quand un response_format est demandé. À False, le
                texte brut est retourné (réparation JSON faite par l'appelant).

        Returns:
            Réponse du LLM

        Raises:
            LLMApiError: Si toutes les tentatives échouent ou si l'erreur n'est pas récupérable
        """
        max_retries = max(0, settings.LLM_MAX_RETRIES if max_retries is None else max_retries)

        def _do_call() -> str:
            try:
                response = self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    response_format=response_format if response_format else None,
                )
                return (response.choices[0].message.content or "").strip()
            except APIError as e:
                raise LLMApiError.from_api_error(e) from e

        content = self._api_call(
            _do_call,
            max_retries=max_retries,
            retry_delay=retry_delay,
            retry_short_delay=retry_short_delay,
        )
        return json.loads(content) if response_format and parse_json else content

    def ask_vision(
        self,
        image_content: bytes,
        mime_type: str,
        prompt: str,
        model: str,
        max_retries: int | None = None,
    ) -> str:
        """Transcrit le contenu d'une image (photo ou scan de devis) avec un modèle vision."""
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    _build_image_content(image_content, mime_type),
                ],
            }
        ]
        return self.ask_llm(messages, model=model, max_retries=max_retries)

    def ocr_pdf(
        self,
        pdf_content: bytes,
        model: str = "mistral-ocr-2512",
        max_retries: int | None = None,
        retry_delay: float = 5,
        retry_short_delay: float = 2,
    ) -> str:
        """
        Envoie le contenu d'un PDF à l'API OCR et retourne le texte extrait (markdown).

        Retry : 429 (retry_delay), 5XX et erreurs de connexion (retry_short_delay).
        """
        max_retries = max(0, settings.LLM_MAX_RETRIES if max_retries is None else max_retries)
        url = urljoin(self.base_url.rstrip("/") + "/", "ocr")
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": model,
            "document": _build_pdf_document_payload(pdf_content),
            "include_image_base64": False,
        }

        def _do_call() -> str:
            post = self._ocr_http_client.post if self._ocr_http_client else httpx.post
            try:
                response = post(url, headers=headers, json=payload, timeout=self.timeout)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                raise LLMApiError(
                    f"OCR API error: {e!s}",
                    code=f"ERROR_{e.__class__.__name__}",
                    details=str(e),
                ) from e
            if response.is_success:
                return _extract_markdown_from_ocr_response(response.json())
            raise LLMApiError(
                f"OCR API error: {response.status_code}",
                code=f"HTTP_{response.status_code}",
                details=response.text,
            )

        return self._api_call(
            _do_call,
            max_retries=max_retries,
            retry_delay=retry_delay,
            retry_short_delay=retry_short_delay,
        )

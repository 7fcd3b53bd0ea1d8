"""
External collaborators of the pipeline.

The pipeline does not ingest files or generate schedules itself. It talks
to two collaborators through small protocols:

- TaskGenerator: turns source documents into raw (unvalidated) tasks
- DocumentSource: supplies the {name, content} document corpus

HttpTaskGenerator calls a generator service over HTTP; the static and
in-memory implementations serve tests and embedding callers that already
hold the data.
"""

import asyncio
from typing import Any, Protocol, runtime_checkable

import httpx

from claimcheck.errors import GenerationError
from claimcheck.schemas import SourceDocument
from claimcheck.utils.config import GeneratorConfig
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)

# Rate limiting and transient server errors; other statuses fail at once
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@runtime_checkable
class TaskGenerator(Protocol):
    """Produces raw schedule tasks from source documents."""

    async def generate(
        self,
        documents: list[SourceDocument],
        *,
        project_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return raw task payloads (camelCase wire format)."""
        ...


@runtime_checkable
class DocumentSource(Protocol):
    """Supplies the source document corpus for a job."""

    async def fetch_documents(self) -> list[SourceDocument]:
        ...


class HttpTaskGenerator:
    """TaskGenerator backed by an HTTP generation service.

    Retries transport errors, 429 and 5xx responses with exponential
    backoff (retry_delay * 2**attempt); other error statuses fail at once.
    """

    def __init__(
        self,
        config: GeneratorConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(self._config.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        endpoint = self._config.endpoint
        max_retries = max(1, self._config.max_retries)
        status_code: int | None = None
        last_error: Exception | None = None

        for attempt in range(max_retries):
            try:
                response = await client.post(endpoint, json=payload)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                status_code = e.response.status_code
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(
                        "Generator rejected request", endpoint=endpoint, status_code=status_code
                    )
                    raise GenerationError(
                        f"Generator request failed: {e}", status_code=status_code
                    ) from e
                logger.warning(
                    "Generator HTTP error",
                    endpoint=endpoint,
                    status_code=status_code,
                    attempt=attempt + 1,
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Generator request error",
                    endpoint=endpoint,
                    error=str(e),
                    attempt=attempt + 1,
                )
            except ValueError as e:
                raise GenerationError(f"Generator returned invalid JSON: {e}") from e

            if attempt < max_retries - 1:
                delay = self._config.retry_delay * (2**attempt)
                await asyncio.sleep(delay)

        logger.error(
            "Generator request failed after retries",
            endpoint=endpoint,
            max_retries=max_retries,
        )
        raise GenerationError(
            f"Generator request failed: {last_error}", status_code=status_code
        ) from last_error

    async def generate(
        self,
        documents: list[SourceDocument],
        *,
        project_name: str | None = None,
    ) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "documents": [d.model_dump(by_alias=True) for d in documents],
        }
        if project_name:
            payload["projectName"] = project_name

        data = await self._post_with_retry(payload)
        if not isinstance(data, dict):
            raise GenerationError("Generator response is not a JSON object")

        if data.get("ok") is False:
            error = data.get("error", "Unknown error")
            logger.error("Generation failed", error=error)
            raise GenerationError(f"Generation failed: {error}")

        tasks = data.get("tasks")
        if not isinstance(tasks, list):
            raise GenerationError("Generator response has no task list")

        logger.info("Tasks generated", count=len(tasks), documents=len(documents))
        return tasks


class StaticTaskGenerator:
    """TaskGenerator that returns a fixed task list."""

    def __init__(self, tasks: list[dict[str, Any]]):
        self._tasks = tasks
        self.calls = 0

    async def generate(
        self,
        documents: list[SourceDocument],
        *,
        project_name: str | None = None,
    ) -> list[dict[str, Any]]:
        self.calls += 1
        return [dict(t) for t in self._tasks]


class InMemoryDocumentSource:
    """DocumentSource over documents already held in memory."""

    def __init__(self, documents: list[SourceDocument]):
        self._documents = list(documents)

    async def fetch_documents(self) -> list[SourceDocument]:
        return list(self._documents)

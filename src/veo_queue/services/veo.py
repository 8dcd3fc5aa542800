"""Gemini API client for long-running Veo video generation."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from veo_queue.core.config import settings

logger = structlog.get_logger()


class RemoteOperationError(Exception):
    """A remote start, poll or download call failed.

    The message keeps the HTTP status code and provider status so callers
    can classify quota exhaustion by pattern matching.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GenerationConfig:
    """Generation parameters sent with a start request."""

    aspect_ratio: str = "16:9"
    negative_prompt: str | None = None
    seed: int | None = None
    person_generation: str | None = None

    def to_parameters(self) -> dict[str, Any]:
        """Map to the API's parameter schema, omitting unset optional fields."""
        params: dict[str, Any] = {"aspectRatio": self.aspect_ratio}
        if self.negative_prompt:
            params["negativePrompt"] = self.negative_prompt
        if self.seed is not None:
            params["seed"] = self.seed
        if self.person_generation:
            params["personGeneration"] = self.person_generation
        return params


@dataclass
class Operation:
    """State of a remote long-running operation."""

    name: str
    done: bool = False
    artifacts: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "Operation":
        error = data.get("error")
        error_text = None
        if error:
            error_text = _format_error(error.get("code"), error.get("status"), error.get("message"))

        response = data.get("response") or {}
        samples = (response.get("generateVideoResponse") or {}).get("generatedSamples") or []
        artifacts = [
            sample["video"]["uri"]
            for sample in samples
            if isinstance(sample, dict) and (sample.get("video") or {}).get("uri")
        ]
        return cls(
            name=data["name"],
            done=bool(data.get("done", False)),
            artifacts=artifacts,
            error=error_text,
        )

    def first_artifact(self) -> str | None:
        return self.artifacts[0] if self.artifacts else None

    def raise_for_error(self) -> None:
        """Raise if the operation finished with an error."""
        if self.done and self.error:
            raise RemoteOperationError(self.error)


class RemoteOperationClient(Protocol):
    """Start/poll/download protocol of a long-running remote generator."""

    async def start(self, prompt: str, config: GenerationConfig) -> Operation: ...

    async def poll(self, operation: Operation) -> Operation: ...

    async def download(self, artifact: str, destination: Path) -> None: ...


def _format_error(code: Any, status: Any, message: Any) -> str:
    parts = [str(p) for p in (code, status) if p]
    prefix = " ".join(parts)
    text = str(message or "unknown error")
    return f"{prefix}: {text}" if prefix else text


def _describe_http_error(response: httpx.Response) -> str:
    """Build an error message from a failed API response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        return _format_error(
            response.status_code, error.get("status"), error.get("message")
        )
    return _format_error(response.status_code, response.reason_phrase, response.text[:500])


class VeoClient:
    """Client for Veo video generation through the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize with API key and optional endpoint overrides."""
        self.api_key = api_key
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.model = model or settings.video_model
        self.timeout = timeout or settings.request_timeout_seconds

    def _get_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, url, headers=self._get_headers(), **kwargs
                )
                response.raise_for_status()
                result: dict[str, Any] = response.json()
                return result
        except httpx.HTTPStatusError as e:
            raise RemoteOperationError(
                _describe_http_error(e.response), status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise RemoteOperationError(f"{type(e).__name__}: {e}") from e

    async def start(self, prompt: str, config: GenerationConfig) -> Operation:
        """Start a video generation operation."""
        data = await self._request(
            "POST",
            f"{self.base_url}/models/{self.model}:predictLongRunning",
            json={
                "instances": [{"prompt": prompt}],
                "parameters": config.to_parameters(),
            },
        )
        operation = Operation.from_response(data)
        operation.raise_for_error()
        logger.info("Generation started", operation=operation.name, model=self.model)
        return operation

    async def poll(self, operation: Operation) -> Operation:
        """Fetch the current state of an operation.

        A finished operation that carries an error is raised, not returned.
        """
        data = await self._request("GET", f"{self.base_url}/{operation.name}")
        updated = Operation.from_response(data)
        updated.raise_for_error()
        return updated

    async def download(self, artifact: str, destination: Path) -> None:
        """Stream a generated video to ``destination``."""
        tmp_path = destination.with_name(destination.name + ".part")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                async with client.stream(
                    "GET", artifact, headers=self._get_headers()
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise RemoteOperationError(
                            _describe_http_error(response), status_code=response.status_code
                        )
                    with tmp_path.open("wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
            tmp_path.replace(destination)
        except httpx.HTTPError as e:
            raise RemoteOperationError(f"{type(e).__name__}: {e}") from e
        finally:
            tmp_path.unlink(missing_ok=True)

        logger.info("Video downloaded", path=str(destination))

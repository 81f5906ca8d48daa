"""Alignment plugins: discovery, selection and invocation."""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from scorealign.schemas.alignment import AlignmentRequest, Onset

logger = logging.getLogger(__name__)

# Output name of plugins producing one onset per score position
ALIGNMENT_OUTPUT = "chordonsets"


class PluginDescriptor(BaseModel):
    """An installed plugin and the output it produces."""

    identifier: str
    output: str
    name: str = ""


@dataclass
class OnsetStream:
    """The plugin is computing; the future resolves to the aligned onsets."""

    model_id: str
    future: "Future[List[Onset]]"


@dataclass
class WrongShape:
    """The plugin would not produce time-instant onsets."""

    message: str


@dataclass
class InitError:
    """The plugin could not be initialised."""

    message: str


StartFailure = Union[WrongShape, InitError]
PluginResult = Union[OnsetStream, WrongShape, InitError]


class AlignmentPlugin(ABC):
    """Base class for score alignment plugins."""

    @abstractmethod
    def start(self, request: AlignmentRequest) -> PluginResult:
        """
        Start an alignment computation.

        Must return promptly; the computation itself completes through
        the returned OnsetStream's future.
        """
        pass

    async def check_ready(self) -> Optional[StartFailure]:
        """
        Check that the plugin can run before starting it.

        Returns:
            None if it can, otherwise the reason it cannot
        """
        return None


class PluginRegistry:
    """Installed plugins, keyed by identifier."""

    def __init__(self) -> None:
        self._descriptors: Dict[str, PluginDescriptor] = {}
        self._factories: Dict[str, Callable[[], AlignmentPlugin]] = {}

    def register(self, descriptor: PluginDescriptor, factory: Callable[[], AlignmentPlugin]) -> None:
        self._descriptors[descriptor.identifier] = descriptor
        self._factories[descriptor.identifier] = factory

    def descriptors(self) -> List[PluginDescriptor]:
        return list(self._descriptors.values())

    def create(self, identifier: str) -> Optional[AlignmentPlugin]:
        """Instantiate a plugin, or None if it is not installed."""
        factory = self._factories.get(identifier)
        if factory is None:
            return None
        return factory()


def list_available(registry: PluginRegistry, output: str = ALIGNMENT_OUTPUT) -> List[PluginDescriptor]:
    """Installed plugins capable of score alignment."""
    candidates = []
    for descriptor in registry.descriptors():
        logger.debug(f"Looking at plugin {descriptor.identifier} with output {descriptor.output!r}")
        if descriptor.output == output:
            candidates.append(descriptor)
    return candidates


def default_choice(registry: PluginRegistry, output: str = ALIGNMENT_OUTPUT) -> Optional[str]:
    """Identifier of the first alignment-capable plugin, if any."""
    available = list_available(registry, output)
    return available[0].identifier if available else None


class AlignmentTransformCache:
    """
    Lazily computed list of alignment-capable plugins.

    Safe to query from several threads; the registry is scanned once until
    invalidated.
    """

    def __init__(self, registry: PluginRegistry, output: str = ALIGNMENT_OUTPUT):
        self.registry = registry
        self.output = output
        self._lock = threading.Lock()
        self._transforms: Optional[List[PluginDescriptor]] = None

    def list_available(self) -> List[PluginDescriptor]:
        with self._lock:
            if self._transforms is None:
                self._transforms = list_available(self.registry, self.output)
                logger.info(f"Found {len(self._transforms)} alignment plugins")
            return list(self._transforms)

    def default_choice(self) -> Optional[str]:
        transforms = self.list_available()
        return transforms[0].identifier if transforms else None

    def invalidate(self) -> None:
        with self._lock:
            self._transforms = None


class HttpAlignmentPlugin(AlignmentPlugin):
    """Alignment plugin backed by an external aligner service over HTTP."""

    def __init__(
        self,
        base_url: str,
        executor: Executor,
        timeout: int = 300,
        health_timeout: float = 5.0,
        output: str = ALIGNMENT_OUTPUT,
        client: Optional[httpx.Client] = None,
        health_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Base URL of the aligner service (e.g., "http://aligner:8010")
            executor: Worker pool running the alignment requests
            timeout: Alignment request timeout in seconds
            health_timeout: Health check timeout in seconds
            output: Output the service is expected to produce
            client: HTTP client for alignment requests, created if not given
            health_client: Async HTTP client for health checks, created if not given
        """
        self.base_url = base_url.rstrip("/")
        self.executor = executor
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.output = output
        self.client = client or httpx.Client(timeout=timeout)
        self.health_client = health_client or httpx.AsyncClient(timeout=health_timeout)

    async def describe(self) -> Optional[Dict[str, Any]]:
        """
        Fetch the service description.

        Returns:
            The health payload, or None if the service is unreachable
        """
        try:
            response = await self.health_client.get(f"{self.base_url}/health")
            if response.status_code != 200:
                return None
            return response.json()
        except Exception as e:
            logger.warning(f"Aligner service health check failed: {e}")
            return None

    async def check_ready(self) -> Optional[StartFailure]:
        description = await self.describe()
        if description is None:
            return InitError(f"Unable to initialise score alignment service at {self.base_url}")

        output = description.get("output", self.output)
        if output != self.output:
            return WrongShape(f"Aligner service produces {output!r}, expected {self.output!r}")
        return None

    def start(self, request: AlignmentRequest) -> PluginResult:
        future = self.executor.submit(self._align, request)
        return OnsetStream(model_id=str(uuid.uuid4()), future=future)

    def _align(self, request: AlignmentRequest) -> List[Onset]:
        result = self._post_alignment(request)
        onsets = result.get("onsets")
        if not isinstance(onsets, list):
            raise ValueError("Aligner response has no 'onsets' list")
        try:
            return [Onset.model_validate(item) for item in onsets]
        except ValidationError as e:
            raise ValueError(f"Aligner returned malformed onsets: {e}")

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def _post_alignment(self, request: AlignmentRequest) -> Dict[str, Any]:
        logger.info(f"Requesting alignment of {request.score_program} from {self.base_url}")
        try:
            response = self.client.post(
                f"{self.base_url}/align",
                json={"program": request.score_program, "parameters": request.to_parameters()},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Aligner service returned error: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.TimeoutException as e:
            logger.error(f"Aligner service request timed out: {e}")
            raise
        except httpx.NetworkError as e:
            logger.error(f"Aligner service network error: {e}")
            raise

    async def close(self) -> None:
        """Close the HTTP clients."""
        self.client.close()
        await self.health_client.aclose()

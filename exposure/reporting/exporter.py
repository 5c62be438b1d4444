"""Report export: render in a worker thread, then deliver, under timeout and retry."""

import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..models.report import DeliveryResult, ExportResult, RenderResult, ReportModel
from ..storage.backend import DeliveryChannel
from ..utils.errors import DependencyError
from ..utils.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class Renderer(ABC):
    """Turns a report model into a document artifact. Implementations may block."""

    name = "renderer"

    @abstractmethod
    def render(self, model: ReportModel) -> RenderResult:
        pass


def _discard(result: RenderResult) -> None:
    if result.success and result.artifact_ref:
        path = Path(result.artifact_ref)
        if path.is_file():
            path.unlink()
            logger.info(f"Removed artifact of abandoned render: {path}")


class _RenderAttempt:
    """
    One render in a worker thread.

    A timed-out or cancelled attempt keeps running in its thread; once
    abandoned, whatever it produces is deleted instead of left behind.
    """

    def __init__(self, renderer: Renderer, model: ReportModel):
        self.renderer = renderer
        self.model = copy.deepcopy(model)
        self._lock = threading.Lock()
        self._abandoned = False
        self._result: Optional[RenderResult] = None

    def run(self) -> RenderResult:
        result = self.renderer.render(self.model)
        with self._lock:
            self._result = result
            if self._abandoned:
                _discard(result)
        return result

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            if self._result is not None:
                _discard(self._result)


class ReportExporter:
    """
    Renders report models and delivers the resulting documents.

    Each render attempt gets its own deep copy of the model and runs in a
    worker thread. Render and send are wrapped in timeout plus bounded
    retry with exponential backoff; exports are cancellable. Artifacts of
    render attempts that time out are removed when their thread finishes.

    Attributes:
        renderer: Document renderer
        channel: Optional delivery channel
        policy: Timeout/retry policy for delivery
        render_policy: Timeout/retry policy for rendering (defaults to policy)
    """

    def __init__(
        self,
        renderer: Renderer,
        channel: Optional[DeliveryChannel] = None,
        policy: Optional[RetryPolicy] = None,
        render_policy: Optional[RetryPolicy] = None
    ):
        self.renderer = renderer
        self.channel = channel
        self.policy = policy or RetryPolicy()
        self.render_policy = render_policy or self.policy
        logger.info(
            f"Initialized ReportExporter: renderer={renderer.name}, "
            f"delivery={'on' if channel else 'off'}"
        )

    async def render(self, model: ReportModel) -> RenderResult:
        """
        Render a private copy of the model.

        Raises:
            DependencyError: If every render attempt failed
        """
        async def attempt() -> RenderResult:
            run = _RenderAttempt(self.renderer, model)
            try:
                result = await asyncio.to_thread(run.run)
            except asyncio.CancelledError:
                run.abandon()
                raise
            if not result.success:
                raise DependencyError.render_failed(self.renderer.name, result.error or "no artifact produced")
            return result

        return await call_with_retry(
            f"render '{model.title}' ({self.renderer.name})", attempt, self.render_policy
        )

    async def export(
        self,
        model: ReportModel,
        destinations: Sequence[str] = (),
        metadata: Optional[Dict[str, Any]] = None
    ) -> ExportResult:
        """
        Render the model and send it to each destination.

        Args:
            model: Report model (never mutated)
            destinations: Delivery destinations
            metadata: Extra metadata passed to the channel

        Returns:
            ExportResult with the render and per-destination deliveries

        Raises:
            DependencyError: If rendering or any delivery exhausts its retries,
                or destinations are given without a delivery channel
        """
        rendered = await self.render(model)
        result = ExportResult(render=rendered)
        if not destinations:
            return result

        if self.channel is None:
            raise DependencyError.delivery_failed(", ".join(destinations), "no delivery channel configured")

        document = await asyncio.to_thread(Path(rendered.artifact_ref).read_bytes)
        details = {
            "title": model.title,
            "classification": model.classification,
            "page_count": rendered.page_count,
        }
        details.update(metadata or {})

        for destination in destinations:
            result.deliveries.append(await self._send(destination, document, details))

        logger.info(f"Exported '{model.title}' to {len(result.deliveries)} destinations")
        return result

    async def _send(self, destination: str, document: bytes, metadata: Dict[str, Any]) -> DeliveryResult:
        async def attempt() -> DeliveryResult:
            delivery = await self.channel.send(destination, document, metadata)
            if not delivery.success:
                raise DependencyError.delivery_failed(destination, delivery.error or "rejected")
            return delivery

        return await call_with_retry(f"send report to {destination}", attempt, self.policy)

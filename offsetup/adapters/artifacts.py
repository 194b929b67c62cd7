"""
Artifact adapter — run a ``DownloadExtract`` step through the pipeline.

Pipeline errors are typed exceptions; this adapter is where they become
failed receipts carrying the error kind.
"""

from __future__ import annotations

import logging

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.core.errors import PipelineError
from offsetup.core.models.action import Receipt
from offsetup.core.models.plan import DownloadExtract
from offsetup.core.services.pipeline import ArtifactPipeline

logger = logging.getLogger(__name__)


class ArtifactAdapter(Adapter):
    """Download, verify and extract artifacts.

    Action params:
        step (dict): The ``DownloadExtract`` step, dumped.
    """

    def __init__(self, pipeline: ArtifactPipeline):
        self._pipeline = pipeline

    @property
    def name(self) -> str:
        return "artifact"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        step = context.params.get("step")
        if not isinstance(step, dict) or not step.get("uri"):
            return False, "Missing required param: 'step' with a 'uri'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        step = DownloadExtract.model_validate(context.params["step"])
        try:
            result = self._pipeline.run(step, cancel=context.cancel)
        except PipelineError as e:
            logger.warning("Artifact %s: %s", step.uri, e)
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=str(e),
                error_kind=e.kind,
                metadata={"uri": step.uri},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"{step.uri}: {e}",
                error_kind="DownloadTransportError",
                metadata={"uri": step.uri},
            )

        verb = "downloaded" if result.downloaded else "reused"
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"{verb} {result.path}",
            metadata={"uri": step.uri, **result.to_metadata()},
        )

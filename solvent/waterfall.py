"""Sequential Architect → Reasoner → Executor → Reviewer pipeline."""

import asyncio
import json
import logging
import re
from collections.abc import Callable

from config.config_loader import StageConfig, WaterfallConfig
from solvent.errors import OperationCancelled, ProviderError, ValidationError
from solvent.estimator import estimate
from solvent.models import ChatRequest, Message, Mode, WaterfallResult, WaterfallStageResult
from solvent.router import FailoverRouter

logger = logging.getLogger(__name__)

GATED_RISK_LEVELS = frozenset({"high", "critical"})
DEFAULT_COMPLEXITY = "medium"

_TAG_BLOCK = re.compile(r"<(think|thinking|graph_data)>.*?</\1>", re.DOTALL)
_FENCE = re.compile(r"```[a-zA-Z]*")


def clean_output(text: str) -> str:
    """Strip reasoning/graph blocks and code fences from a model answer."""
    return _FENCE.sub("", _TAG_BLOCK.sub("", text)).strip()


def parse_json_output(text: str) -> dict | None:
    """Best-effort JSON object extraction. Returns None if nothing parses."""
    cleaned = clean_output(text)
    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if 0 <= start < end:
        candidates.append(cleaned[start : end + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def declared_complexity(architect_output: str) -> str:
    parsed = parse_json_output(architect_output) or {}
    complexity = str(parsed.get("complexity", "")).strip().lower()
    return complexity if complexity in ("low", "medium", "high") else DEFAULT_COMPLEXITY


class WaterfallPipeline:
    """Runs the configured stages one after another through the FailoverRouter."""

    def __init__(self, router: FailoverRouter, config: WaterfallConfig) -> None:
        self._router = router
        self._config = config

    async def run(
        self,
        prompt: str,
        force_proceed: bool = False,
        on_stage: Callable[[WaterfallStageResult], None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> WaterfallResult:
        """Run every stage in order.

        Args:
            prompt: The user's requirements, fed to the first stage.
            force_proceed: Continue past a high/critical resource estimate.
            on_stage: Optional callback invoked after each stage completes.
            cancel_event: When set, the chain stops before the next stage.

        Returns:
            WaterfallResult. On a stage failure it holds the stages completed
            so far, ``status == "failed"`` and the failing stage's role.
        """
        result = WaterfallResult()
        stage_input = prompt
        outputs: dict[str, str] = {}

        for index, stage in enumerate(self._config.stages):
            try:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled()
                stage_result = await self._run_stage(stage, stage_input, outputs)
            except ProviderError as exc:
                if isinstance(exc, OperationCancelled):
                    logger.info("Waterfall cancelled before stage %s", stage.role)
                else:
                    logger.error("Waterfall halted at stage %s: %s", stage.role, exc)
                result.status = "failed"
                result.failed_stage = stage.role
                result.error = exc.user_message
                return result

            result.stages.append(stage_result)
            outputs[stage.role] = stage_result.output
            stage_input = stage_result.output
            if on_stage is not None:
                on_stage(stage_result)

            if index == 0 and self._config.gate_enabled:
                complexity = declared_complexity(stage_result.output)
                result.estimate = estimate(complexity, len(prompt))
                logger.info(
                    "Resource gate: complexity=%s risk=%s",
                    complexity,
                    result.estimate.risk_level,
                )
                if result.estimate.risk_level in GATED_RISK_LEVELS and not force_proceed:
                    logger.warning("Waterfall paused on %s risk estimate", result.estimate.risk_level)
                    result.status = "paused"
                    return result

        return result

    async def _run_stage(self, stage: StageConfig, stage_input: str, outputs: dict[str, str]) -> WaterfallStageResult:
        # The reviewer audits code against the reasoner's plan
        try:
            text = stage.prompt.format(input=stage_input, plan=outputs.get("reasoner", ""))
        except (IndexError, KeyError, ValueError) as exc:
            raise ValidationError(f"Invalid prompt template for stage {stage.role}: {exc!r}") from exc
        request = ChatRequest(
            messages=[Message(role="user", content=text)],
            provider=stage.primary.provider,
            model=stage.primary.model,
            mode=Mode.PLAIN,
            smart_router_enabled=False,
            fallback_model=str(stage.fallback) if stage.fallback else None,
        )
        logger.info("Running waterfall stage %s on %s", stage.role, stage.primary)
        response = await self._router.execute(request)
        return WaterfallStageResult(role=stage.role, output=response.text, model=response.model_used)

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import config
from schemas.enhancement_schemas import (
    AIAnalysis,
    AnalysisMetadata,
    BatchEnhancementResult,
    BatchItemError,
    BatchSummary,
    EnhancementMethod,
    EnhancementMode,
    EnhancementParameters,
    EnhancementRequest,
    EnhancementResult,
    EnhancementState,
)
from services import image_processing
from services.image_processing import ImageProcessingError, InputNotFound, OutputWriteFailed
from services.vision_client import AIServiceError, VisionClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnhancementSettings:
    mode: EnhancementMode = EnhancementMode.ANALYZE_ONLY
    openai_api_key: str = ""
    analysis_model: str = "gpt-4o"
    image_model: str = "dall-e-3"
    analysis_timeout: float = 30.0
    generation_timeout: float = 60.0
    download_timeout: float = 30.0
    filter_timeout: float = 30.0
    batch_max_concurrency: int = 2

    @classmethod
    def from_config(cls) -> "EnhancementSettings":
        return cls(
            mode=EnhancementMode(config.ENHANCEMENT_MODE),
            openai_api_key=config.OPENAI_API_KEY,
            analysis_model=config.OPENAI_MODEL,
            image_model=config.OPENAI_IMAGE_MODEL,
            analysis_timeout=config.ANALYSIS_TIMEOUT_SECONDS,
            generation_timeout=config.GENERATION_TIMEOUT_SECONDS,
            download_timeout=config.DOWNLOAD_TIMEOUT_SECONDS,
            filter_timeout=config.FILTER_TIMEOUT_SECONDS,
            batch_max_concurrency=config.BATCH_MAX_CONCURRENCY,
        )


def _metadata_from_analysis(
    analysis: AIAnalysis,
    parameters: EnhancementParameters,
    generation_prompt: Optional[str] = None,
) -> AnalysisMetadata:
    return AnalysisMetadata(
        dish=analysis.dish,
        description=analysis.description,
        notes=analysis.notes,
        parameters=parameters,
        generation_prompt=generation_prompt,
    )


class EnhancementOrchestrator:
    """
    Turns one uploaded photo into one enhanced photo.

    The AI stage (analysis, optionally generation) is attempted when a VisionClient is
    configured and the mode allows it. Any AI failure falls back to the local filter
    pipeline, so a result is produced whenever the input is a valid image and the
    output directory is writable. Filter-stage errors end in a failed result.

    The orchestrator keeps no per-request state and can be shared across requests.
    """

    def __init__(self, settings: EnhancementSettings, vision_client: Optional[VisionClient] = None):
        self.settings = settings
        self.vision_client = vision_client

    @classmethod
    def from_settings(cls, settings: EnhancementSettings) -> "EnhancementOrchestrator":
        return cls(settings, vision_client=VisionClient.from_settings(settings))

    @property
    def ai_enabled(self) -> bool:
        return self.vision_client is not None and self.settings.mode != EnhancementMode.FILTER_ONLY

    @staticmethod
    def output_path_for(request: EnhancementRequest, output_dir: str) -> str:
        return os.path.join(output_dir, f"enhanced_{request.request_id}.jpg")

    def _transition(self, request: EnhancementRequest, current: EnhancementState, new: EnhancementState) -> EnhancementState:
        logger.info(f"Enhancement {request.request_id}: {current.value} -> {new.value}")
        return new

    async def enhance(self, request: EnhancementRequest, output_dir: str) -> EnhancementResult:
        started = time.perf_counter()
        state = EnhancementState.IDLE
        output_path = self.output_path_for(request, output_dir)

        def finish(method: EnhancementMethod, metadata: AnalysisMetadata, dimensions: Tuple[int, int]) -> EnhancementResult:
            self._transition(request, state, EnhancementState.DONE)
            return EnhancementResult(
                request_id=request.request_id,
                success=True,
                state=EnhancementState.DONE,
                method=method,
                output_path=output_path,
                original_filename=request.original_filename,
                analysis=metadata,
                width=dimensions[0],
                height=dimensions[1],
                processing_time_ms=int((time.perf_counter() - started) * 1000),
            )

        try:
            if not os.path.exists(request.input_path):
                raise InputNotFound(f"Input file not found: {request.original_filename or request.input_path}")
            try:
                os.makedirs(output_dir, exist_ok=True)
            except OSError as e:
                raise OutputWriteFailed(f"Cannot create output directory {output_dir}: {e}")

            analysis: Optional[AIAnalysis] = None
            fallback_reason: Optional[str] = None
            if self.ai_enabled:
                state = self._transition(request, state, EnhancementState.ANALYZING)
                try:
                    analysis = await self.vision_client.analyze(request.input_path, request.custom_prompt)
                    if self.settings.mode == EnhancementMode.ANALYZE_GENERATE:
                        state = self._transition(request, state, EnhancementState.GENERATING)
                        prompt = await self.vision_client.generate(analysis, output_path, request.custom_prompt)
                        dimensions = await asyncio.to_thread(image_processing.read_dimensions, output_path)
                        parameters = EnhancementParameters.from_adjustments(analysis.adjustments)
                        return finish(
                            EnhancementMethod.AI_GENERATED,
                            _metadata_from_analysis(analysis, parameters, generation_prompt=prompt),
                            dimensions,
                        )
                except AIServiceError as e:
                    logger.warning(f"Enhancement {request.request_id}: AI stage failed ({type(e).__name__}: {e}), falling back to filter")
                    analysis, fallback_reason = None, f"{type(e).__name__}: {e}"
                except Exception as e:
                    logger.error(f"Enhancement {request.request_id}: unexpected AI stage error, falling back to filter: {e}", exc_info=True)
                    analysis, fallback_reason = None, f"Unexpected AI error: {e}"

            if analysis is not None:
                parameters = EnhancementParameters.from_adjustments(analysis.adjustments).with_overrides(**request.overrides())
                metadata = _metadata_from_analysis(analysis, parameters)
                method, filter_state = EnhancementMethod.AI_FILTERED, EnhancementState.FILTERING
            else:
                parameters = image_processing.resolve_parameters(request.level, request.overrides())
                if self.settings.mode == EnhancementMode.FILTER_ONLY:
                    method, filter_state = EnhancementMethod.FILTER_ONLY, EnhancementState.FILTERING
                else:
                    method, filter_state = EnhancementMethod.FILTER_FALLBACK, EnhancementState.FILTERING_FALLBACK
                    fallback_reason = fallback_reason or "AI backend not configured"
                metadata = AnalysisMetadata(parameters=parameters, fallback_reason=fallback_reason)

            state = self._transition(request, state, filter_state)
            dimensions = await image_processing.run_filter_pipeline(
                request.input_path, output_path, parameters, timeout=self.settings.filter_timeout
            )
            return finish(method, metadata, dimensions)

        except ImageProcessingError as e:
            self._transition(request, state, EnhancementState.FAILED)
            logger.error(f"Enhancement {request.request_id} failed in state {state.value}: {type(e).__name__}: {e}")
            return EnhancementResult(
                request_id=request.request_id,
                success=False,
                state=EnhancementState.FAILED,
                original_filename=request.original_filename,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                error=str(e) or type(e).__name__,
                error_code=type(e).__name__,
            )

    async def enhance_batch(self, requests: Sequence[EnhancementRequest], output_dir: str) -> BatchEnhancementResult:
        """
        Enhances every request with at most `batch_max_concurrency` in flight.
        One item's failure never stops the others; results keep the input order.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.batch_max_concurrency))

        async def run_one(request: EnhancementRequest) -> EnhancementResult:
            async with semaphore:
                try:
                    return await self.enhance(request, output_dir)
                except Exception as e:
                    logger.error(f"Unexpected error enhancing batch item {request.request_id}: {e}", exc_info=True)
                    return EnhancementResult(
                        request_id=request.request_id,
                        success=False,
                        state=EnhancementState.FAILED,
                        original_filename=request.original_filename,
                        error=f"Unexpected error: {e}",
                        error_code=type(e).__name__,
                    )

        results = await asyncio.gather(*(run_one(request) for request in requests))

        successes = [result for result in results if result.success]
        errors = [
            BatchItemError(
                index=index,
                file=request.original_filename or os.path.basename(request.input_path),
                error=result.error or "Unknown error",
                error_code=result.error_code,
            )
            for index, (request, result) in enumerate(zip(requests, results))
            if not result.success
        ]
        summary = BatchSummary(total=len(results), succeeded=len(successes), failed=len(errors))
        logger.info(f"Batch enhancement finished: {summary.model_dump()}")
        return BatchEnhancementResult(successes=successes, errors=errors, summary=summary)

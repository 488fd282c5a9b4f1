# schemas/enhancement_schemas.py
import math
import uuid
import logging
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

logger = logging.getLogger(__name__)


class EnhancementLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    AUTO = "AUTO"


class EnhancementMode(str, Enum):
    ANALYZE_ONLY = "analyze_only"
    ANALYZE_GENERATE = "analyze_generate"
    FILTER_ONLY = "filter_only"


class EnhancementMethod(str, Enum):
    AI_GENERATED = "ai-generated"
    AI_FILTERED = "ai-filtered"
    FILTER_FALLBACK = "filter-fallback"
    FILTER_ONLY = "filter-only"


class EnhancementState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    FILTERING = "filtering"
    FILTERING_FALLBACK = "filtering_fallback"
    DONE = "done"
    FAILED = "failed"


# Safe (min, max) range for every numeric knob. Values outside are clamped, never rejected.
PARAMETER_BOUNDS: Dict[str, tuple] = {
    "brightness": (0.5, 3.0),
    "contrast": (0.5, 3.0),
    "saturation": (0.5, 3.0),
    "warmth": (-100.0, 100.0),
    "sharpen": (0.0, 3.0),
    "highlights": (-100.0, 100.0),
    "shadows": (-100.0, 100.0),
    "vibrance": (0.0, 100.0),
    "clarity": (0.0, 100.0),
    "exposure": (-2.0, 2.0),
}


class EnhancementParameters(BaseModel):
    """
    Numeric adjustments consumed by the filter pipeline.

    brightness/contrast/saturation/warmth/exposure/sharpen are applied by the filter.
    highlights, shadows, vibrance and clarity come from the AI analysis and are kept
    for auditability; highlights/shadows only toggle `normalize` and clarity only
    derives `sharpen` (see `from_adjustments`).
    """
    model_config = ConfigDict(validate_assignment=True)

    brightness: float = 1.0
    contrast: float = 1.0
    saturation: float = 1.0
    warmth: float = 0.0
    sharpen: float = 0.0
    highlights: float = 0.0
    shadows: float = 0.0
    vibrance: float = 0.0
    clarity: float = 0.0
    exposure: float = 0.0
    normalize: bool = False

    @field_validator(*PARAMETER_BOUNDS.keys())
    @classmethod
    def clamp_to_bounds(cls, value: float, info: ValidationInfo) -> float:
        low, high = PARAMETER_BOUNDS[info.field_name]
        if math.isnan(value):
            default = cls.model_fields[info.field_name].default
            logger.warning(f"Parameter '{info.field_name}' is NaN, using default {default}")
            return default
        clamped = min(max(value, low), high)
        if clamped != value:
            logger.warning(f"Parameter '{info.field_name}'={value} clamped to {clamped} (range {low}..{high})")
        return clamped

    @classmethod
    def from_adjustments(cls, adjustments: "AIAdjustments") -> "EnhancementParameters":
        """Maps AI-proposed adjustments onto the filter's parameter set (clamped)."""
        sharpen = 0.5 + adjustments.clarity / 100 if adjustments.clarity > 0 else 0.0
        return cls(
            brightness=adjustments.brightness,
            contrast=adjustments.contrast,
            saturation=adjustments.saturation,
            warmth=adjustments.warmth,
            sharpen=sharpen,
            highlights=adjustments.highlights,
            shadows=adjustments.shadows,
            vibrance=adjustments.vibrance,
            clarity=adjustments.clarity,
            exposure=adjustments.exposure,
            normalize=adjustments.highlights != 0 or adjustments.shadows != 0,
        )

    def with_overrides(self, **overrides: Optional[float]) -> "EnhancementParameters":
        values = self.model_dump()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return EnhancementParameters(**values)


# --- AI analysis response ---

class AIAdjustments(BaseModel):
    # Defaults used for any key the model omits
    brightness: float = 1.1
    contrast: float = 1.2
    saturation: float = 1.3
    warmth: float = 10.0
    highlights: float = 0.0
    shadows: float = 0.0
    vibrance: float = 20.0
    clarity: float = 30.0
    exposure: float = 0.1


class AIAnalysis(BaseModel):
    dish: str = "food dish"
    description: str = ""
    notes: str = ""
    adjustments: AIAdjustments = Field(default_factory=AIAdjustments)


# --- Orchestrator input/output ---

class EnhancementRequest(BaseModel):
    input_path: str
    original_filename: Optional[str] = None
    custom_prompt: Optional[str] = None
    level: Optional[EnhancementLevel] = None
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    def overrides(self) -> Dict[str, Optional[float]]:
        return {"brightness": self.brightness, "contrast": self.contrast, "saturation": self.saturation}


class AnalysisMetadata(BaseModel):
    dish: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    parameters: Optional[EnhancementParameters] = None
    generation_prompt: Optional[str] = None
    fallback_reason: Optional[str] = None


class EnhancementResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    success: bool
    state: EnhancementState
    method: Optional[EnhancementMethod] = None
    output_path: Optional[str] = None
    original_filename: Optional[str] = None
    analysis: Optional[AnalysisMetadata] = None
    width: Optional[int] = None
    height: Optional[int] = None
    processing_time_ms: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None


class BatchItemError(BaseModel):
    index: int
    file: Optional[str] = None
    error: str
    error_code: Optional[str] = None


class BatchSummary(BaseModel):
    total: int
    succeeded: int
    failed: int


class BatchEnhancementResult(BaseModel):
    successes: List[EnhancementResult] = Field(default_factory=list)
    errors: List[BatchItemError] = Field(default_factory=list)
    summary: BatchSummary

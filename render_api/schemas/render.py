"""
Pydantic schemas for design render endpoints
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SpaceType(str, Enum):
    """Space categories the prompt rules know about"""

    LIVING_DINING = "living_dining"
    MASTER_BEDROOM = "master_bedroom"
    SMALL_BEDROOM = "small_bedroom"
    KITCHEN = "kitchen"
    BATHROOM = "bathroom"
    ENTRY_CORRIDOR = "entry_corridor"
    OTHER = "other"


class ResponseFormat(str, Enum):
    B64_JSON = "b64_json"
    URL = "url"


class JobStatus(str, Enum):
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


# Allowed values for structured vision extraction. Anything else is dropped.
CAMERA_ANGLES = ("FRONTAL", "SLIGHT_45")
CAMERA_DISTANCES = ("NEAR", "MID", "FAR")
WINDOW_WALLS = ("FAR_WALL", "SIDE_WALL", "NONE")
WINDOW_OFFSETS = ("CENTER", "LEFT", "RIGHT")
DAYLIGHT_DIRECTIONS = ("LEFT_TO_RIGHT", "RIGHT_TO_LEFT")
SHADOW_TYPES = ("HARD_LONG", "SOFT_SHORT")
FINISH_LEVELS = ("RAW_CONCRETE", "PUTTY_LINES", "FINISHED")
WALLS = ("far", "left", "right", "side")


def _pick(value: Any, allowed: tuple) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text if text in allowed else None


class StructuralCues(BaseModel):
    """Structured output of a prior vision analysis of the room photo"""

    model_config = ConfigDict(frozen=True)

    camera_angle: Optional[str] = None
    camera_distance: Optional[str] = None
    window_wall: Optional[str] = None
    window_offset: Optional[str] = None
    window_count: Optional[int] = Field(default=None, ge=0, le=6)
    daylight_direction: Optional[str] = None
    shadow_type: Optional[str] = None
    finish_level: Optional[str] = None
    door_walls: List[str] = Field(default_factory=list)
    column_walls: List[str] = Field(default_factory=list)
    beam_walls: List[str] = Field(default_factory=list)

    @field_validator("camera_angle", mode="before")
    @classmethod
    def _camera_angle(cls, v):
        return _pick(v, CAMERA_ANGLES)

    @field_validator("camera_distance", mode="before")
    @classmethod
    def _camera_distance(cls, v):
        return _pick(v, CAMERA_DISTANCES)

    @field_validator("window_wall", mode="before")
    @classmethod
    def _window_wall(cls, v):
        return _pick(v, WINDOW_WALLS)

    @field_validator("window_offset", mode="before")
    @classmethod
    def _window_offset(cls, v):
        return _pick(v, WINDOW_OFFSETS)

    @field_validator("daylight_direction", mode="before")
    @classmethod
    def _daylight_direction(cls, v):
        return _pick(v, DAYLIGHT_DIRECTIONS)

    @field_validator("shadow_type", mode="before")
    @classmethod
    def _shadow_type(cls, v):
        return _pick(v, SHADOW_TYPES)

    @field_validator("finish_level", mode="before")
    @classmethod
    def _finish_level(cls, v):
        return _pick(v, FINISH_LEVELS)

    @field_validator("window_count", mode="before")
    @classmethod
    def _window_count(cls, v):
        try:
            count = int(v)
        except (TypeError, ValueError):
            return None
        return count if 0 <= count <= 6 else None

    @field_validator("door_walls", "column_walls", "beam_walls", mode="before")
    @classmethod
    def _walls(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            v = [v]
        walls = []
        for item in v:
            wall = str(item).strip().lower().replace("_wall", "")
            if wall in WALLS and wall not in walls:
                walls.append(wall)
        return walls


class RenderIntake(BaseModel):
    """User-declared design preferences for one room (localized labels as entered)"""

    model_config = ConfigDict(frozen=True)

    space: str = ""
    style: str = ""
    color: str = ""
    requirements: str = ""
    focus: str = ""
    storage: str = ""
    priority: str = ""
    intensity: str = ""
    vibe: str = ""  # Lighting mood
    decor: str = ""  # Soft furnishing density
    layout_variant: Optional[str] = None  # "A" or "B"; inferred from focus when absent
    room_width: Optional[float] = Field(default=None, description="Room width hint in metres")
    room_depth: Optional[float] = Field(default=None, description="Room depth hint in metres")
    vision_summary: Optional[str] = None
    vision_extraction: Optional[StructuralCues] = None

    @field_validator(
        "space", "style", "color", "requirements", "focus", "storage", "priority", "intensity", "vibe", "decor",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("room_width", "room_depth", mode="before")
    @classmethod
    def _dimension(cls, v):
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        return value if value > 0 else None


# Request schemas
class GenerationRequest(BaseModel):
    """Image-to-image redesign request.

    Model parameters, size, response format and source dimensions are loosely
    typed: values that cannot be used fall back to defaults during
    orchestration instead of failing validation.
    """

    base_image: Optional[str] = Field(default=None, description="Room photo as URL or data URL")
    render_intake: Optional[RenderIntake] = None
    prompt: Optional[str] = Field(default=None, description="Literal prompt; overrides render_intake")
    size: Optional[Any] = None
    client_id: Optional[str] = None
    upload_id: Optional[str] = None
    job_id: Optional[str] = None
    source_weight: Optional[Any] = None
    steps: Optional[Any] = None
    cfg_scale: Optional[Any] = None
    seed: Optional[Any] = None
    response_format: Optional[Any] = None
    source_width: Optional[Any] = None
    source_height: Optional[Any] = None


class InspireRequest(BaseModel):
    """Text-to-image inspiration request (no source photo)"""

    render_intake: Optional[RenderIntake] = None
    prompt: Optional[str] = None
    size: Optional[Any] = None
    steps: Optional[Any] = None
    cfg_scale: Optional[Any] = None
    seed: Optional[Any] = None
    response_format: Optional[Any] = None


# Response schemas
class GenerationResponse(BaseModel):
    """Render result or in-progress marker"""

    ok: bool = True
    status: str = "done"  # "done" or "in_progress"
    result_url: Optional[str] = None
    is_temporary_url: bool = False
    cache_hit: bool = False
    job_id: Optional[str] = None
    cache_key: Optional[str] = None
    prompt_hash: Optional[str] = None
    prompt_chars: Optional[int] = None
    dropped_fields: List[str] = Field(default_factory=list)
    debug: Dict[str, Any] = Field(default_factory=dict)


class PromptPreviewResponse(BaseModel):
    prompt: str
    prompt_chars: int
    prompt_hash: str
    dropped_fields: List[str]
    space_type: str
    layout_variant: str
    finish_level: str
    intensity_preset: str
    size: str
    parameters: Dict[str, Any]


class JobStatusResponse(BaseModel):
    client_id: str
    job_id: str
    status: JobStatus
    started_at: float
    finished_at: Optional[float] = None
    upload_id: Optional[str] = None
    cache_key: Optional[str] = None
    result_url: Optional[str] = None
    is_temporary_url: bool = False
    error_message: Optional[str] = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    error_code: str
    upstream_status: Optional[int] = None
    upstream_body: Optional[str] = None

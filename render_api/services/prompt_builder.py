"""
Prompt construction for HK interior redesign renders.

Turns a RenderIntake (localized labels as the user picked them) plus optional
structural cues from a vision pass into one English instruction string that fits
the upstream 1..1024 character limit.

Segments are assembled in priority order. Mandatory segments (structure lock,
anchor lock, structural cue clauses, space lock, completeness, must-haves) are
never dropped. Droppable segments follow them and, under length pressure, are
removed from the tail one at a time (notes first, style last) until the prompt
fits the soft budget. If the mandatory text alone is over the hard limit it is
truncated with an ellipsis.
"""
import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from render_api.schemas.render import RenderIntake, SpaceType, StructuralCues

logger = logging.getLogger(__name__)

# Bump whenever prompt wording or segment logic changes; it is part of every cache key.
PROMPT_LOGIC_VERSION = "hk-prompt-2026.10-r3"

HARD_LIMIT = 1024
SOFT_LIMIT = 980
ANCHOR_LIMIT = 220
CUE_CLAUSES_LIMIT = 240
NOTES_LIMIT = 380
ELLIPSIS = "..."

STRUCTURE_LOCK = (
    "Keep the original room geometry, camera perspective and window/door positions exactly the same; "
    "do not add or remove any windows or doors."
)
RENDER_QUALITY = "Photorealistic interior redesign render, magazine quality."
CAMERA_LOCK = "Normal lens, level horizon, straight vertical lines; no fisheye, no wide-angle."
COMPLETENESS_LOCK = "Fully finished ceiling, walls, floor and skirting. No bare concrete, no empty room."

MANDATORY_SEGMENTS = ("structure", "anchor", "cues", "space", "completeness", "must_have")
# Highest priority first; dropping starts from the end of this tuple.
DROPPABLE_SEGMENTS = ("style", "color", "focus", "storage", "priority", "intensity", "lighting", "decor", "notes")


class FinishLevel(str, Enum):
    BARE_SHELL = "bare_shell"
    SEMI_FINISHED = "semi_finished"
    FINISHED = "finished"
    UNKNOWN = "unknown"


class IntensityPreset(str, Enum):
    LIGHT = "light"
    RECOMMENDED = "recommended"
    BOLD = "bold"


@dataclass(frozen=True)
class KeywordRule:
    """One row of a mapping table: any keyword present in the label selects the result."""

    keywords: Tuple[str, ...]
    result: object

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(k in text or k.lower() in lowered for k in self.keywords)


def lookup(rules: Sequence[KeywordRule], text: str, default=None):
    """Return the result of the first matching rule, else ``default``."""
    for rule in rules:
        if rule.matches(text):
            return rule.result
    return default


def normalize(text: Optional[str]) -> str:
    """Collapse all whitespace runs to single spaces."""
    return re.sub(r"\s+", " ", str(text or "")).strip()


def cap(text: str, limit: int) -> str:
    text = normalize(text)
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def clamp_prompt(text: Optional[str]) -> str:
    """Normalize a literal prompt and enforce the upstream hard limit."""
    return cap(text or "", HARD_LIMIT)


def prompt_hash(prompt: str) -> str:
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:12]


# Mapping tables. Order matters: earlier rows win.

SPACE_RULES: List[KeywordRule] = [
    KeywordRule(("客餐", "living-dining", "living dining", "living/dining"), SpaceType.LIVING_DINING),
    KeywordRule(("入户", "玄", "關", "关", "走廊", "通道", "entry", "corridor", "hallway"), SpaceType.ENTRY_CORRIDOR),
    KeywordRule(("厨房", "廚", "厨", "kitchen"), SpaceType.KITCHEN),
    KeywordRule(("卫生间", "衛", "卫", "浴", "洗手", "厕", "廁", "bath", "toilet"), SpaceType.BATHROOM),
    KeywordRule(("小睡房", "眼镜房", "眼鏡房", "次卧", "次臥", "儿童", "兒童", "small bedroom", "kids"), SpaceType.SMALL_BEDROOM),
    KeywordRule(("大睡房", "主人房", "主卧", "主臥", "master"), SpaceType.MASTER_BEDROOM),
    # Rooms named with 房 that are not bedrooms; kept verbatim as OTHER
    KeywordRule(("書房", "书房", "工作間", "工作间", "储物房", "儲物房", "study", "storeroom"), SpaceType.OTHER),
    KeywordRule(("睡", "卧", "臥", "房", "bedroom"), SpaceType.MASTER_BEDROOM),
    KeywordRule(("客", "餐", "living", "dining"), SpaceType.LIVING_DINING),
]

STYLE_RULES: List[KeywordRule] = [
    KeywordRule(("日式", "木", "japandi"), "Japandi / Japanese wood minimalist, warm and calm, clean lines, natural wood details"),
    KeywordRule(("奶油", "creamy"), "Creamy minimal style, soft warm palette, rounded details, cozy"),
    KeywordRule(("輕奢", "轻奢", "light luxury"), "Light luxury modern style, subtle metal accents, refined materials"),
    KeywordRule(("現代", "现代", "簡約", "简约", "modern", "minimal"), "Modern minimalist, clean geometry, practical"),
]

COLOR_RULES: List[KeywordRule] = [
    KeywordRule(("淺木", "浅木", "light oak"), "light oak wood + off-white, warm neutral"),
    KeywordRule(("胡桃", "walnut"), "walnut wood + gray-white, warm gray neutral"),
    KeywordRule(("純白", "纯白", "pure white"), "pure white + light gray, clean and bright"),
    KeywordRule(("深木", "dark wood"), "dark wood + warm white, cozy contrast"),
]

FOCUS_RULES: List[KeywordRule] = [
    KeywordRule(("餐", "dining"), "Focus: dining circulation + dining table for 4 + sideboard/tall pantry as the main feature."),
    KeywordRule(("電視", "电视", "tv"), "Focus: TV wall built-in storage with concealed cabinets + open display niches."),
    KeywordRule(("衣櫃", "衣柜", "wardrobe"), "Focus: full-height wardrobe system with practical internal compartments."),
    KeywordRule(("玄關", "玄关", "entry"), "Focus: entry shoe cabinet + bench + full-height storage + hidden clutter zone."),
    KeywordRule(("書枱", "书桌", "工作", "desk", "study"), "Focus: built-in desk + storage wall integration (work/study corner)."),
    KeywordRule(("牆", "墙", "wall"), "Focus: feature storage wall with mix of concealed + display."),
]
FOCUS_HINT_KEYWORDS = ("餐邊", "餐边", "餐桌", "動線", "动线", "電視", "电视", "衣櫃", "衣柜", "玄關", "玄关", "書枱", "书桌", "收納牆", "收纳墙")

STORAGE_RULES: List[KeywordRule] = [
    KeywordRule(("隱", "隐", "concealed", "hidden"), "Storage: prioritize concealed storage (flat fronts), clean and uncluttered."),
    KeywordRule(("展示", "display"), "Storage: mix of display (glass/open shelves with lighting) + concealed storage to keep tidy."),
    KeywordRule(("書枱", "书桌", "工作", "desk"), "Storage: integrate storage with a desk/work nook."),
]
STORAGE_HINT_KEYWORDS = ("隱藏", "隐藏", "展示", "工作位", "书桌", "書枱")

PRIORITY_RULES: List[KeywordRule] = [
    KeywordRule(("耐用", "durab"), "Priority: durability (scratch-resistant finishes, robust hardware)."),
    KeywordRule(("易", "easy"), "Priority: easy to clean (matte anti-fingerprint surfaces, stain-resistant finishes)."),
    KeywordRule(("性", "value"), "Priority: value-for-money (simple, efficient cabinetry layout)."),
    KeywordRule(("收纳", "收納", "storage"), "Priority: storage-first; more full-height built-ins and hidden storage."),
    KeywordRule(("显大", "顯大", "spacious"), "Priority: airy and visually larger; light palette + clean lines."),
]
PRIORITY_HINT_KEYWORDS = ("性價比", "性价比", "耐用", "易打理")

INTENSITY_PRESET_RULES: List[KeywordRule] = [
    KeywordRule(("輕", "轻", "保留", "light"), IntensityPreset.LIGHT),
    KeywordRule(("大", "bold"), IntensityPreset.BOLD),
]
INTENSITY_TEXT: Dict[IntensityPreset, str] = {
    IntensityPreset.LIGHT: "Intensity: light refresh (still must look fully finished).",
    IntensityPreset.RECOMMENDED: "Intensity: noticeable redesign, clearly different from the original room.",
    IntensityPreset.BOLD: "Intensity: bold redesign, visible changes while keeping structure.",
}
INTENSITY_HINT_KEYWORDS = ("輕改", "轻改", "明顯", "明显", "大改造")

LIGHTING_RULES: List[KeywordRule] = [
    KeywordRule(("明亮", "bright", "airy"), "Lighting: bright layered cove + downlights, warm 3000K, balanced exposure."),
    KeywordRule(
        ("酒店", "高級", "高级", "hotel", "luxury"),
        "Lighting: premium layered (cove + downlights + wall wash + niches), warm 2700-3000K, controlled highlights.",
    ),
    KeywordRule(("暖", "warm", "cozy"), "Lighting: warm cozy layered (cove + downlights + accents), warm 2700-3000K, soft shadows."),
]
DEFAULT_LIGHTING = "Lighting: layered cove + downlights + accents, warm 2700-3000K, realistic GI."

DECOR_RULES: List[KeywordRule] = [
    KeywordRule(("克制", "清爽", "minimal"), "Soft furnishings: minimal, clean, a few key pieces only."),
    KeywordRule(("豐富", "丰富", "rich"), "Soft furnishings: richer styling (curtains/rug/art/plants/cushions) but still tidy."),
    KeywordRule(("標準", "标准", "推薦", "推荐", "standard"), "Soft furnishings: balanced standard styling, natural and livable."),
]

# Explicit "完成度：xx" markers are checked before the keyword lists.
FINISH_MARKER_RULES: List[KeywordRule] = [
    KeywordRule(("毛坯", "清水", "bare"), FinishLevel.BARE_SHELL),
    KeywordRule(("半装", "半裝", "semi"), FinishLevel.SEMI_FINISHED),
    KeywordRule(("已装", "已裝", "精装", "精裝", "finished", "furnished"), FinishLevel.FINISHED),
]
FINISH_KEYWORD_RULES: List[KeywordRule] = [
    KeywordRule(
        ("毛坯", "清水", "未裝修", "未装修", "水泥", "批蕩", "批荡", "工地", "裸牆", "裸墙", "未鋪", "未铺",
         "unfinished", "bare", "construction", "raw concrete"),
        FinishLevel.BARE_SHELL,
    ),
    KeywordRule(
        ("已裝修", "已装修", "精裝", "精装", "完成面", "地板", "地砖", "地磚", "瓷砖", "瓷磚", "乳胶漆", "油漆",
         "窗簾", "窗帘", "吊顶", "天花", "furnished", "finished"),
        FinishLevel.FINISHED,
    ),
]
FINISH_FROM_CUES = {
    "RAW_CONCRETE": FinishLevel.BARE_SHELL,
    "PUTTY_LINES": FinishLevel.SEMI_FINISHED,
    "FINISHED": FinishLevel.FINISHED,
}
FINISH_POLICY: Dict[FinishLevel, str] = {
    FinishLevel.BARE_SHELL: "Bare shell: complete the full fit-out (ceiling, walls, floor, curtains), then furniture and lighting.",
    FinishLevel.SEMI_FINISHED: "Semi-finished: keep finished parts, add missing finishes, unify materials and lighting.",
    FinishLevel.FINISHED: "Already finished: boldly redesign finishes, cabinetry and soft furnishings as a new proposal.",
    FinishLevel.UNKNOWN: "Produce a clearly redesigned, fully finished proposal.",
}


@dataclass(frozen=True)
class SpaceProfile:
    lock: str
    must_have: str
    layout_a: str
    layout_b: str
    negative: str


SPACE_PROFILES: Dict[SpaceType, SpaceProfile] = {
    SpaceType.LIVING_DINING: SpaceProfile(
        lock="HK open-plan living-dining room.",
        must_have="TV wall + sofa seating + dining table for 4 + pendant above dining table + sideboard/pantry.",
        layout_a="TV wall storage, 2-3 seat sofa facing TV, dining table near circulation.",
        layout_b="slim TV wall, clear main passage, dining-led layout with tall pantry, compact sofa.",
        negative="No bedroom furniture. No oversized sectional.",
    ),
    SpaceType.MASTER_BEDROOM: SpaceProfile(
        lock="HK master bedroom.",
        must_have="residential bed + full-height wardrobe + bedside + curtains.",
        layout_a="bed and headboard on solid wall, sliding wardrobe on one wall, clear bedside circulation.",
        layout_b="wardrobe to ceiling with slim integrated vanity/desk, bed on opposite solid wall.",
        negative="No bunk bed. No hotel lobby scale.",
    ),
    SpaceType.SMALL_BEDROOM: SpaceProfile(
        lock="HK small bedroom (very compact), space-saving.",
        must_have="space-saving bed (platform/tatami/Murphy) + full-height slim wardrobe + integrated desk/shelves.",
        layout_a="platform bed aligned to window wall, drawers under bed, sliding wardrobe.",
        layout_b="Murphy bed inside full-height storage wall, compact integrated desk.",
        negative="No king-size bed. No large desk.",
    ),
    SpaceType.KITCHEN: SpaceProfile(
        lock="HK kitchen, narrow galley or compact L-shape.",
        must_have="base cabinets + wall cabinets to ceiling + countertop + sink/cooktop zones + under-cabinet task lighting.",
        layout_a="one-wall galley, compact sink-stove-fridge run, clean worktop.",
        layout_b="compact L-shape, tight aisle, tall pantry/appliance cabinet.",
        negative="No big island. No luxury open kitchen scale.",
    ),
    SpaceType.BATHROOM: SpaceProfile(
        lock="HK bathroom, small and enclosed.",
        must_have="vanity cabinet + mirror cabinet + shower screen/zone + anti-slip floor tiles + vanity light.",
        layout_a="wet-dry separation with glass, compact vanity, wall niches.",
        layout_b="max wall storage, compact shower, easy-clean tiles.",
        negative="No large bathtub. No double vanity.",
    ),
    SpaceType.ENTRY_CORRIDOR: SpaceProfile(
        lock="HK entryway/corridor, narrow passage.",
        must_have="full-height shoe cabinet + bench + full-length mirror + shallow storage + clear walkway.",
        layout_a="shoe cabinet, bench and mirror; shallow cabinets keep the walkway clear.",
        layout_b="one-side shallow storage wall to ceiling, end-wall utility cabinet.",
        negative="No sofa or TV. No deep cabinets blocking the walkway.",
    ),
    SpaceType.OTHER: SpaceProfile(
        lock="HK apartment room.",
        must_have="finished ceiling/walls/floor + built-in cabinetry + layered lighting + soft furnishings.",
        layout_a="built-ins along solid walls, clear circulation.",
        layout_b="one full-height storage wall, open floor in the middle.",
        negative="No oversized furniture.",
    ),
}

COMMON_NEGATIVE = "No luxury scale, no warped walls, no CGI toy look."

# Structural cue extraction from free-text vision summaries

FEATURE_PATTERNS = {
    "window": re.compile(r"窗|window", re.IGNORECASE),
    "door": re.compile(r"(?<!窗)門|(?<!窗)门|door", re.IGNORECASE),
    "column": re.compile(r"柱|column|pillar", re.IGNORECASE),
    "beam": re.compile(r"梁|beam", re.IGNORECASE),
}
WALL_RULES: List[KeywordRule] = [
    KeywordRule(("正面", "对面", "對面", "远端", "遠端", "尽头", "盡頭", "正前", "far wall", "back wall", "far"), "far"),
    KeywordRule(("左", "left"), "left"),
    KeywordRule(("右", "right"), "right"),
    KeywordRule(("侧", "側", "side"), "side"),
]
NEGATION = re.compile(r"(没有|沒有|無|无)\s*(?:任何)?\s*(窗|門|门|柱|梁)|\bno\s+(windows?|doors?|columns?|beams?)\b", re.IGNORECASE)
NUMBER_WORDS = {"一": 1, "二": 2, "两": 2, "兩": 2, "三": 3, "四": 4, "one": 1, "two": 2, "three": 3, "four": 4, "a single": 1}
COUNT_PATTERNS = {
    "window": re.compile(r"(\d+|[一二两兩三四])\s*(?:个|個|扇|道)?\s*窗|\b(\d+|one|two|three|four|a single)\s+(?:\w+\s+)?windows?\b", re.IGNORECASE),
    "door": re.compile(r"(\d+|[一二两兩三四])\s*(?:个|個|扇|道)?\s*[门門]|\b(\d+|one|two|three|four|a single)\s+(?:\w+\s+)?doors?\b", re.IGNORECASE),
    "column": re.compile(r"(\d+|[一二两兩三四])\s*(?:个|個|根|条|條)?\s*柱|\b(\d+|one|two|three|four|a single)\s+(?:\w+\s+)?(?:columns?|pillars?)\b", re.IGNORECASE),
    "beam": re.compile(r"(\d+|[一二两兩三四])\s*(?:个|個|根|条|條|道)?\s*梁|\b(\d+|one|two|three|four|a single)\s+(?:\w+\s+)?beams?\b", re.IGNORECASE),
}
NEGATED_FEATURE = {"窗": "window", "门": "door", "門": "door", "柱": "column", "梁": "beam"}


def _plural(word: str, count: int) -> str:
    return word if count == 1 else f"{word}s"


def _parse_count(feature: str, clause: str) -> Optional[int]:
    match = COUNT_PATTERNS[feature].search(clause)
    if not match:
        return None
    token = (match.group(1) or match.group(2) or "").lower()
    if token.isdigit():
        count = int(token)
        return count if 0 < count <= 6 else None
    return NUMBER_WORDS.get(token)


def _feature_clause(feature: str, wall: str, count: Optional[int]) -> str:
    if feature == "window":
        if count:
            return f"Exactly {count} {_plural('window', count)} on the {wall} wall; do not add extra windows."
        return f"Keep the window on the {wall} wall; do not add extra windows."
    if feature == "door":
        return f"Keep the door on the {wall} wall in place; do not add doors."
    if feature == "column":
        return f"Keep the column at the {wall} wall; do not remove it."
    return f"Keep the ceiling beam along the {wall} wall; do not hide it with a full false ceiling."


def extract_structural_clauses(vision_summary: Optional[str] = None, cues: Optional[StructuralCues] = None) -> List[str]:
    """Parse wall-relative opening/column/beam mentions into enforceable clauses.

    A mention with no detectable wall produces nothing.
    """
    clauses: List[str] = []

    def add(clause: str):
        if clause not in clauses:
            clauses.append(clause)

    if cues is not None:
        for wall in cues.door_walls:
            add(_feature_clause("door", wall, None))
        for wall in cues.column_walls:
            add(_feature_clause("column", wall, None))
        for wall in cues.beam_walls:
            add(_feature_clause("beam", wall, None))

    text = normalize(vision_summary)
    if not text:
        return clauses

    for raw in re.split(r"[。；;！!\n]|\.\s", text):
        clause = raw.strip()
        if not clause:
            continue
        negated = NEGATION.search(clause)
        if negated:
            token = negated.group(2) or negated.group(3) or ""
            feature = NEGATED_FEATURE.get(token) or token.lower().rstrip("s")
            if feature == "window":
                add("No visible window; do not add windows.")
            elif feature == "door":
                add("No visible door; do not add doors.")
            continue
        wall = lookup(WALL_RULES, clause)
        if not wall:
            continue
        for feature, pattern in FEATURE_PATTERNS.items():
            if pattern.search(clause):
                add(_feature_clause(feature, wall, _parse_count(feature, clause)))
    return clauses


def build_anchor_lock(cues: Optional[StructuralCues]) -> str:
    """Short camera/window/daylight/finish anchor, at most ANCHOR_LIMIT chars.

    Over budget, finish goes first, then daylight (only when a window line
    exists), then camera. Returns an empty string when neither a camera nor a
    window/daylight line is known.
    """
    if cues is None:
        return ""

    camera_line = ""
    if cues.camera_angle or cues.camera_distance:
        angle = "Camera frontal" if cues.camera_angle == "FRONTAL" else "Camera slight 45°"
        distance = {"NEAR": "near", "MID": "mid", "FAR": "far"}.get(cues.camera_distance or "")
        camera_line = f"{angle}, {distance} distance." if distance else f"{angle}."

    window_line = ""
    if cues.window_wall == "NONE":
        window_line = "No visible window."
    elif cues.window_wall:
        wall = "far wall" if cues.window_wall == "FAR_WALL" else "side wall"
        offset = {"CENTER": "centered", "LEFT": "offset left", "RIGHT": "offset right"}.get(cues.window_offset or "")
        count = cues.window_count or 1
        where = f"{wall}, {offset}" if offset else wall
        label = "One medium window" if count == 1 else f"{count} windows"
        window_line = f"{label} on the {where} (not floor-to-ceiling)."

    daylight_line = ""
    if cues.daylight_direction:
        direction = "from left" if cues.daylight_direction == "LEFT_TO_RIGHT" else "from right"
        shadow = {"HARD_LONG": "long hard shadow", "SOFT_SHORT": "short soft shadow"}.get(cues.shadow_type or "")
        daylight_line = f"Strong daylight {direction}, {shadow} on floor." if shadow else f"Daylight {direction}."

    finish_line = {
        "RAW_CONCRETE": "Source photo: raw concrete walls/floor.",
        "PUTTY_LINES": "Source photo: putty joint lines, raw cement floor.",
        "FINISHED": "Source photo: finished surfaces.",
    }.get(cues.finish_level or "", "")

    if not (camera_line or window_line or daylight_line):
        return ""

    keep = [line for line in (window_line, daylight_line, finish_line, camera_line) if line]
    anchor = normalize(" ".join(keep))
    for line, condition in ((finish_line, True), (daylight_line, bool(window_line)), (camera_line, True)):
        if len(anchor) <= ANCHOR_LIMIT:
            break
        if line and condition:
            keep = [x for x in keep if x != line]
            anchor = normalize(" ".join(keep))
    return cap(anchor, ANCHOR_LIMIT)


def detect_space(label: str) -> SpaceType:
    text = normalize(label)
    if not text:
        return SpaceType.LIVING_DINING
    return lookup(SPACE_RULES, text, SpaceType.OTHER)


def detect_layout_variant(intake: RenderIntake) -> str:
    explicit = normalize(intake.layout_variant).upper()
    if explicit in ("A", "B"):
        return explicit
    focus = normalize(intake.focus)
    if re.search(r"(^|[^A-Za-z])B([^A-Za-z]|$)", focus) or any(k in focus for k in ("方案B", "方案2", "第二")):
        return "B"
    return "A"


def detect_intensity_preset(label: Optional[str]) -> IntensityPreset:
    text = normalize(label)
    if not text:
        return IntensityPreset.RECOMMENDED
    return lookup(INTENSITY_PRESET_RULES, text, IntensityPreset.RECOMMENDED)


def detect_intake_intensity(intake: Optional[RenderIntake]) -> IntensityPreset:
    """Declared intensity, else a hint found in the free-text requirements."""
    if intake is None:
        return IntensityPreset.RECOMMENDED
    return detect_intensity_preset(intake.intensity or _infer_keyword(normalize(intake.requirements), INTENSITY_HINT_KEYWORDS))


def detect_finish_level(text: Optional[str], cues: Optional[StructuralCues] = None) -> FinishLevel:
    if cues is not None and cues.finish_level:
        return FINISH_FROM_CUES[cues.finish_level]
    raw = normalize(text)
    if not raw:
        return FinishLevel.UNKNOWN
    marker = re.search(r"完成度\s*[:：]\s*(\S{1,4})", raw)
    if marker:
        level = lookup(FINISH_MARKER_RULES, marker.group(1))
        if level:
            return level
    return lookup(FINISH_KEYWORD_RULES, raw, FinishLevel.UNKNOWN)


def _infer_keyword(requirements: str, keywords: Sequence[str]) -> str:
    for keyword in keywords:
        if keyword in requirements:
            return keyword
    return ""


def _scale_hint(intake: RenderIntake) -> str:
    if intake.room_width is not None and intake.room_width <= 2.5:
        return "Very compact scale, ceiling about 2.5m."
    return "Compact scale, ceiling about 2.5m."


@dataclass
class PromptResult:
    """Bounded prompt plus metadata about how it was assembled"""

    prompt: str
    prompt_chars: int
    prompt_hash: str
    dropped_fields: List[str] = field(default_factory=list)
    space_type: SpaceType = SpaceType.LIVING_DINING
    layout_variant: str = "A"
    finish_level: FinishLevel = FinishLevel.UNKNOWN
    intensity_preset: IntensityPreset = IntensityPreset.RECOMMENDED
    segments: List[str] = field(default_factory=list)
    truncated: bool = False


class PromptBuilder:
    """Deterministic, I/O-free prompt assembly with a length budget"""

    def __init__(self, soft_limit: int = SOFT_LIMIT, hard_limit: int = HARD_LIMIT):
        self.soft_limit = soft_limit
        self.hard_limit = hard_limit

    def build(
        self,
        intake: RenderIntake,
        vision_summary: Optional[str] = None,
        cues: Optional[StructuralCues] = None,
    ) -> PromptResult:
        """Build the image-to-image redesign prompt for one room photo."""
        vision_summary = vision_summary if vision_summary is not None else intake.vision_summary
        cues = cues if cues is not None else intake.vision_extraction

        space_type = detect_space(intake.space)
        profile = SPACE_PROFILES[space_type]
        variant = detect_layout_variant(intake)
        finish = detect_finish_level(vision_summary or intake.requirements, cues)

        cue_text, cues_overflow = self._join_clauses(extract_structural_clauses(vision_summary, cues))
        mandatory = [
            ("structure", f"{RENDER_QUALITY} {STRUCTURE_LOCK} {CAMERA_LOCK}"),
            ("anchor", build_anchor_lock(cues)),
            ("cues", cue_text),
            ("space", self._space_segment(intake, space_type, profile)),
            ("completeness", f"{COMPLETENESS_LOCK} {FINISH_POLICY[finish]} {profile.negative} {COMMON_NEGATIVE}"),
            ("must_have", self._must_have_segment(profile, variant)),
        ]
        return self._assemble(
            mandatory,
            self._droppable_segments(intake),
            already_dropped=["cues_overflow"] if cues_overflow else [],
            space_type=space_type,
            layout_variant=variant,
            finish_level=finish,
            intensity_preset=detect_intake_intensity(intake),
        )

    def build_inspiration(self, intake: RenderIntake) -> PromptResult:
        """Build a text-to-image prompt. There is no source photo, so no structure or anchor lock."""
        space_type = detect_space(intake.space)
        profile = SPACE_PROFILES[space_type]
        variant = detect_layout_variant(intake)
        mandatory = [
            ("structure", f"{RENDER_QUALITY} {CAMERA_LOCK}"),
            ("space", self._space_segment(intake, space_type, profile)),
            ("completeness", f"{COMPLETENESS_LOCK} {profile.negative} {COMMON_NEGATIVE}"),
            ("must_have", self._must_have_segment(profile, variant)),
        ]
        return self._assemble(
            mandatory,
            self._droppable_segments(intake),
            space_type=space_type,
            layout_variant=variant,
            finish_level=FinishLevel.UNKNOWN,
            intensity_preset=detect_intake_intensity(intake),
        )

    def _assemble(
        self,
        mandatory: List[Tuple[str, str]],
        droppable: List[Tuple[str, str]],
        already_dropped: Sequence[str] = (),
        **meta,
    ) -> PromptResult:
        mandatory = [(name, normalize(text)) for name, text in mandatory if normalize(text)]
        droppable = [(name, normalize(text)) for name, text in droppable if normalize(text)]

        dropped: List[str] = list(already_dropped)
        prompt = self._join(mandatory + droppable)
        while len(prompt) > self.soft_limit and droppable:
            name, _ = droppable.pop()
            dropped.append(name)
            prompt = self._join(mandatory + droppable)

        truncated = False
        if len(prompt) > self.hard_limit:
            prompt = prompt[: self.hard_limit - len(ELLIPSIS)] + ELLIPSIS
            truncated = True
            logger.warning(f"Mandatory prompt segments exceed {self.hard_limit} chars; truncated")

        if dropped:
            logger.debug(f"Prompt over soft budget, dropped segments: {dropped}")

        return PromptResult(
            prompt=prompt,
            prompt_chars=len(prompt),
            prompt_hash=prompt_hash(prompt),
            dropped_fields=dropped,
            segments=[name for name, _ in mandatory + droppable],
            truncated=truncated,
            **meta,
        )

    @staticmethod
    def _join(segments: List[Tuple[str, str]]) -> str:
        return normalize(" ".join(text for _, text in segments))

    @staticmethod
    def _join_clauses(clauses: List[str]) -> Tuple[str, bool]:
        """Clauses that fit CUE_CLAUSES_LIMIT, and whether any were left out."""
        kept: List[str] = []
        for clause in clauses:
            if len(" ".join(kept + [clause])) > CUE_CLAUSES_LIMIT:
                logger.info(f"Structural cues over {CUE_CLAUSES_LIMIT} chars, kept {len(kept)} of {len(clauses)} clauses")
                return " ".join(kept), True
            kept.append(clause)
        return " ".join(kept), False

    @staticmethod
    def _space_segment(intake: RenderIntake, space_type: SpaceType, profile: SpaceProfile) -> str:
        lock = profile.lock
        if space_type == SpaceType.OTHER:
            lock = f"{profile.lock} Space: {cap(intake.space, 40)}."
        return f"{lock} {_scale_hint(intake)} Buildable design."

    @staticmethod
    def _must_have_segment(profile: SpaceProfile, variant: str) -> str:
        layout = profile.layout_b if variant == "B" else profile.layout_a
        return f"Must include: {profile.must_have} Layout {variant}: {layout}"

    @staticmethod
    def _droppable_segments(intake: RenderIntake) -> List[Tuple[str, str]]:
        style = normalize(intake.style)
        color = normalize(intake.color)
        requirements = normalize(intake.requirements)
        focus = normalize(intake.focus) or _infer_keyword(requirements, FOCUS_HINT_KEYWORDS)
        storage = normalize(intake.storage) or _infer_keyword(requirements, STORAGE_HINT_KEYWORDS)
        priority = normalize(intake.priority) or _infer_keyword(requirements, PRIORITY_HINT_KEYWORDS)
        intensity = normalize(intake.intensity) or _infer_keyword(requirements, INTENSITY_HINT_KEYWORDS)
        vibe = normalize(intake.vibe)
        decor = normalize(intake.decor)

        segments = {
            "style": f"Style: {lookup(STYLE_RULES, style, style)}." if style else "",
            "color": f"Color palette: {lookup(COLOR_RULES, color, color)}." if color else "",
            "focus": lookup(FOCUS_RULES, focus, f"Focus: {cap(focus, 60)}.") if focus else "",
            "storage": lookup(STORAGE_RULES, storage, f"Storage: {cap(storage, 60)}.") if storage else "",
            "priority": lookup(PRIORITY_RULES, priority, f"Priority: {cap(priority, 60)}.") if priority else "",
            "intensity": INTENSITY_TEXT[detect_intensity_preset(intensity)] if intensity else "",
            "lighting": lookup(LIGHTING_RULES, vibe, f"Lighting: {cap(vibe, 60)}, layered and warm.") if vibe else DEFAULT_LIGHTING,
            "decor": lookup(DECOR_RULES, decor, f"Soft furnishings: {cap(decor, 60)}.") if decor else "",
            "notes": f"Notes: {cap(requirements, NOTES_LIMIT)}" if requirements else "",
        }
        return [(name, segments[name]) for name in DROPPABLE_SEGMENTS]

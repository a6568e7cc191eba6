"""Pulse feature synthesis and pulse-type classification."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .ble.hr_parse import is_valid_bpm

DEFAULT_BPM = 72
SLOW_BELOW = 60
FAST_ABOVE = 90
SYNDROME_CONFIDENCE = 0.80


@dataclass(frozen=True)
class PositionFeatures:
    floating: float
    normal: float
    deep: float


@dataclass(frozen=True)
class RateFeatures:
    rate_value: int
    category: str
    rhythm_regularity: float
    intermittent: bool


@dataclass(frozen=True)
class ForceFeatures:
    force_score: float
    systolic_amplitude: float
    diastolic_amplitude: float


@dataclass(frozen=True)
class ShapeFeatures:
    width_score: float
    length_score: float
    smoothness: float
    tautness: float
    fullness: float
    hollowness: float


@dataclass(frozen=True)
class MomentumFeatures:
    rising_slope: float
    falling_slope: float
    dicrotic_notch_depth: float
    wave_area: float


@dataclass(frozen=True)
class PulseFeatureVector:
    """Complete feature set for one acquisition window."""

    position: PositionFeatures
    rate: RateFeatures
    force: ForceFeatures
    shape: ShapeFeatures
    momentum: MomentumFeatures

    @property
    def average_bpm(self) -> int:
        return self.rate.rate_value

    @property
    def rate_category(self) -> str:
        return self.rate.category

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one acquisition window."""

    main_pulse: str
    main_confidence: float
    pulse_rate: int
    features: PulseFeatureVector
    secondary_pulse: Optional[str] = None
    secondary_confidence: Optional[float] = None
    syndrome: Optional[str] = None
    syndrome_confidence: Optional[float] = None
    all_probabilities: Tuple[Tuple[str, float], ...] = ()

    def to_dict(self) -> dict:
        return {
            "main_pulse": self.main_pulse,
            "main_confidence": self.main_confidence,
            "secondary_pulse": self.secondary_pulse,
            "secondary_confidence": self.secondary_confidence,
            "pulse_rate": self.pulse_rate,
            "syndrome": self.syndrome,
            "syndrome_confidence": self.syndrome_confidence,
            "all_probabilities": [list(p) for p in self.all_probabilities],
            "features": self.features.to_dict(),
        }


@dataclass(frozen=True)
class RateRule:
    """One row of the heart-rate threshold table. Bounds are inclusive."""

    low: Optional[int]
    high: Optional[int]
    pulse: str
    confidence: float
    syndrome: Optional[str]

    def matches(self, bpm: int) -> bool:
        if self.low is not None and bpm < self.low:
            return False
        if self.high is not None and bpm > self.high:
            return False
        return True


RATE_RULES: Tuple[RateRule, ...] = (
    RateRule(None, 59, "迟脉", 0.82, "阳虚寒凝"),
    RateRule(60, 90, "平和脉", 0.88, None),
    RateRule(91, 110, "数脉", 0.84, "阴虚内热"),
    RateRule(111, None, "疾脉", 0.79, "阳热亢盛"),
)

# Sub-scores used when only a heart rate is available
PLACEHOLDER_POSITION = PositionFeatures(floating=0.25, normal=0.65, deep=0.10)
PLACEHOLDER_RHYTHM_REGULARITY = 0.95
PLACEHOLDER_FORCE = ForceFeatures(force_score=0.55, systolic_amplitude=1.25, diastolic_amplitude=0.35)
PLACEHOLDER_SHAPE = ShapeFeatures(
    width_score=0.45,
    length_score=0.60,
    smoothness=0.70,
    tautness=0.75,
    fullness=0.50,
    hollowness=0.15,
)
PLACEHOLDER_MOMENTUM = MomentumFeatures(
    rising_slope=0.65,
    falling_slope=0.45,
    dicrotic_notch_depth=0.30,
    wave_area=125.5,
)


def average_bpm(samples: Sequence[int]) -> Optional[int]:
    """Mean of `samples` rounded half-up, or None for an empty window."""
    if not samples:
        return None
    mean = Decimal(sum(samples)) / Decimal(len(samples))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_average_bpm(samples: Sequence[int], live_bpm: int = 0, default: int = DEFAULT_BPM) -> int:
    """Window average, falling back to the live value and then `default`."""
    avg = average_bpm(samples)
    if avg is not None:
        return avg
    if is_valid_bpm(live_bpm):
        return live_bpm
    return default


def rate_category(bpm: int) -> str:
    if bpm < SLOW_BELOW:
        return "slow"
    if bpm > FAST_ABOVE:
        return "fast"
    return "normal"


def synthesize_features(bpm: int) -> PulseFeatureVector:
    """Build a full feature vector from an average heart rate."""
    return PulseFeatureVector(
        position=PLACEHOLDER_POSITION,
        rate=RateFeatures(
            rate_value=bpm,
            category=rate_category(bpm),
            rhythm_regularity=PLACEHOLDER_RHYTHM_REGULARITY,
            intermittent=False,
        ),
        force=PLACEHOLDER_FORCE,
        shape=PLACEHOLDER_SHAPE,
        momentum=PLACEHOLDER_MOMENTUM,
    )


def rate_rule(bpm: int) -> RateRule:
    """Return the table row covering `bpm`. The table is exhaustive."""
    for rule in RATE_RULES:
        if rule.matches(bpm):
            return rule
    raise AssertionError(f"No rate rule covers {bpm} bpm")


def classify_rate(bpm: int, features: Optional[PulseFeatureVector] = None) -> ClassificationResult:
    """Classify by the heart-rate threshold table."""
    rule = rate_rule(bpm)
    return ClassificationResult(
        main_pulse=rule.pulse,
        main_confidence=rule.confidence,
        pulse_rate=bpm,
        features=features or synthesize_features(bpm),
        syndrome=rule.syndrome,
        syndrome_confidence=SYNDROME_CONFIDENCE if rule.syndrome else None,
    )


def analyze_heart_rate(
    samples: Sequence[int],
    live_bpm: int = 0,
    default_bpm: int = DEFAULT_BPM,
) -> ClassificationResult:
    """Classify an acquisition window of heart-rate samples."""
    bpm = resolve_average_bpm(samples, live_bpm, default_bpm)
    return classify_rate(bpm, synthesize_features(bpm))


# ---- weighted multi-feature model ----

ScoreFn = Callable[[PulseFeatureVector], float]

# Declaration order breaks probability ties
PULSE_SCORES: Tuple[Tuple[str, ScoreFn], ...] = (
    ("浮脉", lambda f: f.position.floating * 0.8),
    ("洪脉", lambda f: 0.85 if f.force.force_score > 0.7 and f.shape.width_score > 0.6 else 0.1),
    ("濡脉", lambda f: f.position.floating * 0.7 if f.force.force_score < 0.3 else 0.05),
    ("沉脉", lambda f: f.position.deep * 0.8),
    ("弱脉", lambda f: f.position.deep * 0.7 if f.force.force_score < 0.3 else 0.05),
    ("迟脉", lambda f: 0.9 if f.rate.rate_value < 60 else 0.05),
    ("数脉", lambda f: 0.9 if f.rate.rate_value > 90 else 0.05),
    ("缓脉", lambda f: 0.8 if 60 <= f.rate.rate_value <= 70 else 0.1),
    ("疾脉", lambda f: 0.95 if f.rate.rate_value > 120 else 0.02),
    ("虚脉", lambda f: 0.85 if f.force.force_score < 0.3 else 0.1),
    ("细脉", lambda f: 0.8 if f.shape.width_score < 0.3 else 0.15),
    ("微脉", lambda f: 0.75 if f.force.force_score < 0.2 else 0.05),
    ("实脉", lambda f: 0.85 if f.force.force_score > 0.7 else 0.1),
    ("滑脉", lambda f: 0.8 if f.shape.smoothness > 0.7 else 0.1),
    ("弦脉", lambda f: 0.85 if f.shape.tautness > 0.6 else 0.15),
    ("紧脉", lambda f: 0.8 if f.shape.tautness > 0.8 else 0.1),
)

WEIGHTED_SYNDROME_FACTOR = 0.9

SYNDROME_PULSES: Dict[str, Tuple[str, ...]] = {
    "表证": ("浮脉",),
    "里实热证": ("洪脉", "数脉", "滑脉"),
    "里虚寒证": ("沉脉", "迟脉", "细脉"),
    "气虚证": ("虚脉", "细脉", "弱脉"),
    "血虚证": ("细脉", "涩脉"),
    "阳虚证": ("沉脉", "细脉", "迟脉"),
    "气滞证": ("弦脉", "涩脉"),
    "血瘀证": ("涩脉", "结脉", "代脉"),
    "痰湿证": ("滑脉", "濡脉", "缓脉"),
    "肝郁气滞": ("弦脉", "细脉"),
    "心火亢盛": ("数脉", "洪脉"),
    "脾胃虚弱": ("缓脉", "弱脉"),
    "肾气不足": ("沉脉", "细脉", "弱脉"),
}


def rank_pulse_types(features: PulseFeatureVector) -> List[Tuple[str, float]]:
    """Normalised pulse-type probabilities, highest first."""
    raw = [(name, score(features)) for name, score in PULSE_SCORES]
    total = sum(p for _, p in raw)
    normalized = [(name, p / total) for name, p in raw]
    # sorted() is stable, so equal probabilities keep declaration order
    return sorted(normalized, key=lambda item: -item[1])


def weighted_syndrome_confidence(main_confidence: float) -> float:
    """Syndrome confidence is main confidence scaled by 0.9, kept to three places."""
    # main_confidence has two decimals, so three places hold the exact product
    return round(main_confidence * WEIGHTED_SYNDROME_FACTOR, 3)


def match_syndrome(pulses: Sequence[str]) -> Optional[str]:
    for syndrome, pulse_list in SYNDROME_PULSES.items():
        if any(p in pulse_list for p in pulses):
            return syndrome
    return None


def classify_features(features: PulseFeatureVector) -> ClassificationResult:
    """Classify with the weighted multi-feature model."""
    ranked = rank_pulse_types(features)
    main_pulse, main_p = ranked[0]
    secondary_pulse, secondary_p = ranked[1]

    main_confidence = round(main_p, 2)
    syndrome = match_syndrome([main_pulse, secondary_pulse])

    return ClassificationResult(
        main_pulse=main_pulse,
        main_confidence=main_confidence,
        pulse_rate=features.average_bpm,
        features=features,
        secondary_pulse=secondary_pulse,
        secondary_confidence=round(secondary_p, 2),
        syndrome=syndrome,
        syndrome_confidence=weighted_syndrome_confidence(main_confidence) if syndrome else None,
        all_probabilities=tuple((name, round(p, 4)) for name, p in ranked),
    )

from typing import Dict, Any, Callable, Optional, Tuple
from collections import OrderedDict
from datetime import datetime
import asyncio
import structlog

from context_engine.domain.models.config import EmotionConfig
from context_engine.domain.models.context_state import (
    Context,
    EmotionAnalysis,
    EmotionState,
    EmotionTrend,
    utc_now,
)
from context_engine.infrastructure.observability.performance_monitor import PerformanceMonitor
from .emotion_patterns import (
    EMOTION_PATTERNS,
    INTENSITY_MODIFIERS,
    NEGATIVE_EMOTIONS,
    POSITIVE_EMOTIONS,
    TONE_ADJUSTMENTS,
    ResponseToneAdjustment,
)

logger = structlog.get_logger(__name__)

SERVICE_NAME = "emotion_analyzer"


class EmotionAnalyzer:
    """Table-driven emotion classification with a bounded result cache.

    Scores accumulate per label as matches * intensity * weight over every
    pattern row, then each intensity modifier found in the text scales all
    scores. Results are cached by a fingerprint of the text prefix and the
    conversational context that affects the trend.
    """

    def __init__(
        self,
        config: Optional[EmotionConfig] = None,
        monitor: Optional[PerformanceMonitor] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config or EmotionConfig()
        self.monitor = monitor
        self._now = now
        self._cache: "OrderedDict[str, Tuple[EmotionAnalysis, datetime]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._sweep_task: Optional[asyncio.Task] = None

    def analyze_emotional_state(self, text: str, context: Optional[Context] = None) -> EmotionAnalysis:
        """Classify the emotion of a piece of text"""

        tracker = self.monitor.start_operation(SERVICE_NAME, "analyze_emotional_state", len(text)) if self.monitor else None
        try:
            cache_key = self._cache_key(text, context)

            # Check cache first
            cached = self._get_from_cache(cache_key)
            if cached is not None:
                if tracker:
                    tracker.finish(output_size=len(cached.model_dump_json()), cache_hit=True)
                return cached

            result = self._perform_analysis(text, context)
            self._add_to_cache(cache_key, result)
        except Exception as e:
            if tracker:
                tracker.finish(error=e)
            raise

        if tracker:
            tracker.finish(output_size=len(result.model_dump_json()), cache_hit=False)
        return result.model_copy(deep=True)

    def get_tone_adjustment(self, analysis: EmotionAnalysis) -> ResponseToneAdjustment:
        """Response tone guidance for the detected primary emotion"""

        adjustment = TONE_ADJUSTMENTS.get(analysis.primary)
        if adjustment is None:
            return ResponseToneAdjustment()

        # Mild happiness reads better with encouragement than enthusiasm
        if analysis.primary == EmotionState.HAPPY.value and analysis.intensity <= 0.7:
            return adjustment.model_copy(update={"tone": "encouraging"}, deep=True)
        return adjustment.model_copy(deep=True)

    def score_emotions(self, text: str) -> Dict[str, float]:
        """Raw per-label scores after modifiers"""

        scores: Dict[str, float] = {}
        for row in EMOTION_PATTERNS:
            matches = row.pattern.findall(text)
            if matches:
                label = row.emotion.value
                scores[label] = scores.get(label, 0.0) + len(matches) * row.intensity * row.weight

        for modifier, multiplier in INTENSITY_MODIFIERS:
            if modifier.search(text):
                for label in scores:
                    scores[label] *= multiplier

        return scores

    def cleanup_cache(self) -> int:
        """Drop cached results older than the cache timeout"""

        now = self._now()
        stale = [
            key for key, (_, stored_at) in self._cache.items()
            if (now - stored_at).total_seconds() > self.config.cache_timeout_seconds
        ]
        for key in stale:
            del self._cache[key]

        if stale:
            logger.debug("Emotion cache swept", removed=len(stale))
        return len(stale)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def get_cache_stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self.config.cache_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "timeout_seconds": self.config.cache_timeout_seconds,
        }

    async def start(self) -> None:
        """Start the periodic cache sweep"""

        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            self.cleanup_cache()

    def _perform_analysis(self, text: str, context: Optional[Context]) -> EmotionAnalysis:
        scores = self.score_emotions(text)

        primary = self._find_primary(scores)
        primary_score = scores.get(primary, 0.0)

        return EmotionAnalysis(
            primary=primary,
            secondary=self._find_secondary(scores, primary),
            intensity=min(primary_score / 10, 1.0),
            confidence=self._calculate_confidence(scores, primary_score),
            indicators=[
                f"{label}_{'strong' if score > 0.7 else 'moderate'}"
                for label, score in scores.items()
                if score > 0.3
            ],
            trend=self._calculate_trend(context, primary),
        )

    def _find_primary(self, scores: Dict[str, float]) -> str:
        primary = EmotionState.NEUTRAL.value
        best = 0.0
        # Strictly greater keeps the earliest label on ties
        for label, score in scores.items():
            if score > best:
                primary, best = label, score
        return primary

    def _find_secondary(self, scores: Dict[str, float], primary: str) -> Optional[str]:
        secondary = None
        best = 0.0
        for label, score in scores.items():
            if label != primary and score > best:
                secondary, best = label, score
        return secondary if best > 0.3 else None

    def _calculate_confidence(self, scores: Dict[str, float], primary_score: float) -> float:
        total = sum(scores.values())
        if total == 0:
            return 0.3

        dominance = primary_score / total
        strength = min(primary_score / 5, 1.0)
        return min(dominance * strength, 1.0)

    def _calculate_trend(self, context: Optional[Context], current: str) -> EmotionTrend:
        previous = EmotionState.NEUTRAL.value
        if context is not None:
            previous = context.immediate.current_user_emotion.value

        if previous == current:
            return EmotionTrend.STABLE

        prev_positive = previous in POSITIVE_EMOTIONS
        curr_positive = current in POSITIVE_EMOTIONS
        prev_negative = previous in NEGATIVE_EMOTIONS
        curr_negative = current in NEGATIVE_EMOTIONS

        if not prev_positive and curr_positive:
            return EmotionTrend.IMPROVING
        if prev_positive and not curr_positive:
            return EmotionTrend.DECLINING
        if prev_negative and not curr_negative:
            return EmotionTrend.IMPROVING
        if not prev_negative and curr_negative:
            return EmotionTrend.DECLINING
        return EmotionTrend.STABLE

    def _cache_key(self, text: str, context: Optional[Context]) -> str:
        if context is None:
            fingerprint = "neutral|greeting|"
        else:
            immediate = context.immediate
            fingerprint = "|".join([
                immediate.current_user_emotion.value,
                immediate.conversation_flow.current_phase.value,
                ",".join(immediate.active_topics),
            ])
        return f"{text[:100]}|{fingerprint}"

    def _get_from_cache(self, key: str) -> Optional[EmotionAnalysis]:
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        analysis, stored_at = entry
        now = self._now()
        if (now - stored_at).total_seconds() > self.config.cache_timeout_seconds:
            del self._cache[key]
            self._misses += 1
            return None

        # Hits refresh the entry so it survives longer
        self._cache[key] = (analysis, now)
        self._cache.move_to_end(key)
        self._hits += 1
        return analysis.model_copy(deep=True)

    def _add_to_cache(self, key: str, analysis: EmotionAnalysis) -> None:
        if key not in self._cache and len(self._cache) >= self.config.cache_size:
            oldest_key = next(iter(self._cache))
            del self._cache[oldest_key]

        self._cache[key] = (analysis.model_copy(deep=True), self._now())
        self._cache.move_to_end(key)

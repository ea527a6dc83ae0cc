from .emotion_analyzer import EmotionAnalyzer
from .emotion_patterns import EMOTION_PATTERNS, INTENSITY_MODIFIERS, ResponseToneAdjustment

__all__ = ["EmotionAnalyzer", "EMOTION_PATTERNS", "INTENSITY_MODIFIERS", "ResponseToneAdjustment"]

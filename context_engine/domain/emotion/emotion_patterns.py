from typing import Dict, List, Tuple
from pydantic import BaseModel, Field
import re

from context_engine.domain.models.context_state import EmotionState


class EmotionPattern(BaseModel):
    """One row of the scoring table"""
    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    pattern: re.Pattern
    emotion: EmotionState
    intensity: float
    weight: float


def _words(*words: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


# Evaluated in order; every row contributes independently
EMOTION_PATTERNS: List[EmotionPattern] = [
    EmotionPattern(pattern=_words("happy", "joy", "excited", "thrilled", "delighted", "pleased", "glad", "cheerful"),
                   emotion=EmotionState.HAPPY, intensity=0.8, weight=1.0),
    EmotionPattern(pattern=_words("love", "adore", "amazing", "wonderful", "fantastic", "great", "excellent"),
                   emotion=EmotionState.HAPPY, intensity=0.7, weight=0.9),
    EmotionPattern(pattern=_words("good", "nice", "fine", "okay", "alright"),
                   emotion=EmotionState.HAPPY, intensity=0.4, weight=0.5),
    EmotionPattern(pattern=_words("sad", "depressed", "down", "upset", "disappointed", "hurt", "crying"),
                   emotion=EmotionState.SAD, intensity=0.8, weight=1.0),
    EmotionPattern(pattern=_words("angry", "mad", "furious", "irritated", "annoyed", "frustrated", "pissed"),
                   emotion=EmotionState.FRUSTRATED, intensity=0.8, weight=1.0),
    EmotionPattern(pattern=_words("worried", "anxious", "nervous", "scared", "afraid", "fearful", "panic"),
                   emotion=EmotionState.CONFUSED, intensity=0.7, weight=0.9),
    EmotionPattern(pattern=_words("confused", "puzzled", "lost", "uncertain", "unclear"),
                   emotion=EmotionState.CONFUSED, intensity=0.6, weight=0.8),
    EmotionPattern(pattern=_words("neutral", "calm", "peaceful", "relaxed", "content"),
                   emotion=EmotionState.NEUTRAL, intensity=0.5, weight=0.6),
    EmotionPattern(pattern=_words("tired", "exhausted", "sleepy", "drained", "weary"),
                   emotion=EmotionState.CALM, intensity=0.7, weight=0.8),
    EmotionPattern(pattern=_words("energetic", "pumped", "motivated", "inspired", "determined"),
                   emotion=EmotionState.EXCITED, intensity=0.8, weight=0.9),
    EmotionPattern(pattern=_words("curious", "interested", "wondering", "intrigued"),
                   emotion=EmotionState.CURIOUS, intensity=0.6, weight=0.7),
]

# Each modifier present multiplies every accumulated score
INTENSITY_MODIFIERS: List[Tuple[re.Pattern, float]] = [
    (_words("very"), 1.3),
    (_words("extremely"), 1.5),
    (_words("really"), 1.2),
    (_words("quite"), 1.1),
    (_words("somewhat"), 0.8),
    (_words("slightly"), 0.7),
    (_words(r"a\s+bit"), 0.6),
    (_words(r"kind\s+of"), 0.7),
    (_words(r"sort\s+of"), 0.7),
]

POSITIVE_EMOTIONS = {EmotionState.HAPPY.value, EmotionState.EXCITED.value, EmotionState.CURIOUS.value}
NEGATIVE_EMOTIONS = {EmotionState.SAD.value, EmotionState.FRUSTRATED.value, EmotionState.CONFUSED.value}


class ToneAdjustments(BaseModel):
    warmth: float = 0.5
    energy: float = 0.0
    formality: float = 0.0
    empathy: float = 0.5


class ResponseToneAdjustment(BaseModel):
    """Guidance for the renderer on how to pitch the next reply"""
    tone: str = Field(default="neutral", description="supportive, enthusiastic, calming, encouraging or neutral")
    adjustments: ToneAdjustments = Field(default_factory=ToneAdjustments)
    suggested_phrases: List[str] = Field(default_factory=list)
    avoid_phrases: List[str] = Field(default_factory=list)


TONE_ADJUSTMENTS: Dict[str, ResponseToneAdjustment] = {
    EmotionState.HAPPY.value: ResponseToneAdjustment(
        tone="enthusiastic",
        adjustments=ToneAdjustments(warmth=0.8, energy=0.7, formality=-0.2, empathy=0.5),
        suggested_phrases=["That's wonderful!", "I'm so glad to hear that!", "How exciting!"],
        avoid_phrases=["I understand this is difficult", "That sounds challenging"],
    ),
    EmotionState.SAD.value: ResponseToneAdjustment(
        tone="supportive",
        adjustments=ToneAdjustments(warmth=0.9, energy=-0.3, formality=-0.1, empathy=0.9),
        suggested_phrases=["I'm here for you", "That sounds really difficult", "Your feelings are completely valid"],
        avoid_phrases=["Cheer up!", "Look on the bright side", "At least..."],
    ),
    EmotionState.FRUSTRATED.value: ResponseToneAdjustment(
        tone="calming",
        adjustments=ToneAdjustments(warmth=0.6, energy=-0.5, formality=0.1, empathy=0.8),
        suggested_phrases=[
            "I can understand why you'd feel that way",
            "That does sound frustrating",
            "Let's work through this together",
        ],
        avoid_phrases=["Calm down", "You're overreacting", "It's not that bad"],
    ),
    EmotionState.CONFUSED.value: ResponseToneAdjustment(
        tone="encouraging",
        adjustments=ToneAdjustments(warmth=0.7, energy=0.2, formality=-0.3, empathy=0.6),
        suggested_phrases=["Let me help clarify that", "That's a great question", "Let's break this down together"],
        avoid_phrases=["That's obvious", "You should know this", "It's simple"],
    ),
    EmotionState.EXCITED.value: ResponseToneAdjustment(
        tone="enthusiastic",
        adjustments=ToneAdjustments(warmth=0.9, energy=0.8, formality=-0.4, empathy=0.4),
        suggested_phrases=["That's amazing!", "I love your enthusiasm!", "Tell me more!"],
        avoid_phrases=["Slow down", "Let's be realistic", "Don't get too excited"],
    ),
    EmotionState.CURIOUS.value: ResponseToneAdjustment(
        tone="encouraging",
        adjustments=ToneAdjustments(warmth=0.6, energy=0.4, formality=-0.1, empathy=0.5),
        suggested_phrases=["Great question!", "Let's explore that"],
        avoid_phrases=["That's not important"],
    ),
}

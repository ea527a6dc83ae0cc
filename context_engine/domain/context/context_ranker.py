from typing import Dict, List, Optional
from collections import Counter
import re

from context_engine.domain.models.context_state import (
    ChatMessage,
    Context,
    ContextAnalysis,
    ConversationFlow,
    ConversationPhase,
    EmotionAnalysis,
    EmotionState,
    FlowState,
    ResponseRecommendation,
    TopicClassification,
    UserIntentAnalysis,
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WORD = re.compile(r"\w+")
INFORMATION_KEYWORDS = ("help", "how", "what")


class ContextRanker:
    """Heuristic scoring of conversations: flow, topics, relevance and intent"""

    def analyze_conversation_flow(self, messages: List[ChatMessage]) -> ConversationFlow:
        return ConversationFlow(
            current_phase=self.determine_phase(messages),
            flow_state=FlowState(
                momentum=self.calculate_momentum(messages),
                depth=self.calculate_depth(messages),
                engagement=self.calculate_engagement(messages),
                clarity=self.calculate_clarity(messages),
            ),
        )

    def determine_phase(self, messages: List[ChatMessage]) -> ConversationPhase:
        if not messages:
            return ConversationPhase.GREETING
        if len(messages) < 3:
            return ConversationPhase.EXPLORATION
        if len(messages) < 10:
            return ConversationPhase.DEEP_DISCUSSION
        return ConversationPhase.CONCLUSION

    def calculate_momentum(self, messages: List[ChatMessage]) -> float:
        if len(messages) < 2:
            return 0.5

        recent = messages[-5:]
        avg_length = sum(len(m.content) for m in recent) / len(recent)
        return min(avg_length / 200, 1.0)

    def calculate_depth(self, messages: List[ChatMessage]) -> float:
        if not messages:
            return 0.1

        avg_length = sum(len(m.content) for m in messages) / len(messages)
        return min(avg_length / 300, 1.0)

    def calculate_engagement(self, messages: List[ChatMessage]) -> float:
        if not messages:
            return 0.5
        return sum(1 for m in messages if m.sender == "user") / len(messages)

    def calculate_clarity(self, messages: List[ChatMessage]) -> float:
        # Fewer questions reads as a clearer conversation
        if not messages:
            return 0.8

        questions = sum(1 for m in messages if "?" in m.content)
        return max(1.0 - questions / len(messages), 0.1)

    def extract_active_topics(self, messages: List[ChatMessage], limit: int = 5) -> List[str]:
        """Most frequent words longer than three characters"""

        words = [
            word
            for message in messages
            for word in _PUNCTUATION.sub("", message.content.lower()).split()
            if len(word) > 3
        ]
        return [word for word, _ in Counter(words).most_common(limit)]

    def calculate_relevance(self, query: str, content: str) -> float:
        """Share of query words present in the content, plus 0.3 for a verbatim match"""

        query_words = set(_WORD.findall(query.lower()))
        if not query_words:
            return 0.0

        content_lower = content.lower()
        score = len(query_words & set(_WORD.findall(content_lower))) / len(query_words)
        if query.lower() in content_lower:
            score += 0.3
        return min(score, 1.0)

    def rank_messages(self, query: str, messages: List[ChatMessage]) -> Dict[str, float]:
        """Relevance of each message to the query, keyed by message id"""
        return {m.id: self.calculate_relevance(query, m.content) for m in messages}

    def analyze_context(self, context: Context) -> ContextAnalysis:
        """Relevance, tone, topics, intent and reply recommendations for a context"""

        return ContextAnalysis(
            relevance_score=self.context_relevance(context),
            emotional_tone=self.emotional_tone(context),
            topic_classification=[
                TopicClassification(topic=topic) for topic in context.immediate.active_topics
            ],
            user_intent_analysis=self.user_intent(context),
            response_recommendations=self.response_recommendations(context),
            metadata={"session_id": context.session.session_id},
        )

    def context_relevance(self, context: Context) -> float:
        immediate = context.immediate
        factors = [
            1.0 if immediate.recent_messages else 0.5,
            1.0 if immediate.active_topics else 0.5,
            1.0 if immediate.current_user_emotion != EmotionState.NEUTRAL else 0.7,
            1.0 if context.session.message_count > 0 else 0.5,
        ]
        return sum(factors) / len(factors)

    def emotional_tone(self, context: Context) -> EmotionAnalysis:
        if context.immediate.emotion_analysis is not None:
            return context.immediate.emotion_analysis.model_copy(deep=True)

        emotion = context.immediate.current_user_emotion
        return EmotionAnalysis(
            primary=emotion.value,
            intensity=0.3 if emotion == EmotionState.NEUTRAL else 0.7,
            confidence=0.8,
            indicators=context.immediate.active_topics[:3],
        )

    def user_intent(self, context: Context) -> UserIntentAnalysis:
        last_message: Optional[ChatMessage] = (
            context.immediate.recent_messages[-1] if context.immediate.recent_messages else None
        )
        if last_message is None:
            return UserIntentAnalysis(primary_intent="greeting", confidence=0.5)

        content = last_message.content.lower()
        if any(keyword in content for keyword in INFORMATION_KEYWORDS):
            return UserIntentAnalysis(
                primary_intent="seeking_information",
                secondary_intents=["clarification"],
                confidence=0.8,
                action_required=True,
                urgency="medium",
            )

        return UserIntentAnalysis(primary_intent="conversation", confidence=0.7)

    def response_recommendations(self, context: Context) -> List[ResponseRecommendation]:
        recommendations = []
        immediate = context.immediate

        if immediate.current_user_emotion == EmotionState.CONFUSED:
            recommendations.append(ResponseRecommendation(
                type="clarification",
                priority=0.9,
                suggestion="Provide clear, simple explanation",
                reasoning="User appears confused based on emotional analysis",
            ))

        if immediate.current_user_emotion in (EmotionState.SAD, EmotionState.FRUSTRATED):
            recommendations.append(ResponseRecommendation(
                type="support",
                priority=0.8,
                suggestion="Acknowledge the user's feelings before moving on",
                reasoning=f"User appears {immediate.current_user_emotion.value}",
            ))

        if immediate.active_topics:
            recommendations.append(ResponseRecommendation(
                type="information",
                priority=0.7,
                suggestion=f"Continue discussion about {immediate.active_topics[0]}",
                reasoning="User is actively engaged with this topic",
            ))

        return sorted(recommendations, key=lambda r: r.priority, reverse=True)

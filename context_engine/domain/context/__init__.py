 # This module handles Context engineering

#  +---------------------+
# |      Memory         |   (Tiered, bounded, in-process)
# |---------------------|
# | Short-term messages |
# | Long-term interactions + preferences |
# | Working context     |
# +---------------------+

# +---------------------+
# |      State          |   (Current session lifecycle)
# |---------------------|
# | Session id          |
# | Turn number         |
# | Active / shut down  |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Context            |   (Rebuilt for every reply)
# |------------------------------|
# | System: personality, policy  |
# | Session: profile, themes     |
# | Immediate: recent messages,  |
# |   emotion, flow, env info    |
# +------------------------------+
#         |
#         v
#   [cache / validator / reply generation]

from .context_manager import ContextManager, create_context_manager
from .context_ranker import ContextRanker
from .context_retriever import ContextRetriever, local_environment_probe
from .collaborators import (
    CompressionResult,
    ContextCompressor,
    ConversationSummary,
    FeedbackCollector,
    FeedbackRecord,
    InMemoryFeedbackCollector,
    RecentWindowCompressor,
)

__all__ = [
    "ContextManager",
    "create_context_manager",
    "ContextRanker",
    "ContextRetriever",
    "local_environment_probe",
    "CompressionResult",
    "ContextCompressor",
    "ConversationSummary",
    "FeedbackCollector",
    "FeedbackRecord",
    "InMemoryFeedbackCollector",
    "RecentWindowCompressor",
]

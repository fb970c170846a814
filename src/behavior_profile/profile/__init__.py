"""Short-term and long-term behavioral profiles."""

from behavior_profile.profile.longterm import LongTermProfileUpdater, LtpUpdateResult, merge
from behavior_profile.profile.models import LongTermProfile, ShortTermProfile, TopicScore
from behavior_profile.profile.normalizer import normalize
from behavior_profile.profile.session import SessionTopicAggregator
from behavior_profile.profile.storage import ProfileStorage, ProfileStorageError, ProfileSummaries
from behavior_profile.profile.summary import ProfileSummaryGenerator, describe_ltp, top_topics

__all__ = [
    "LongTermProfile",
    "LongTermProfileUpdater",
    "LtpUpdateResult",
    "ProfileStorage",
    "ProfileStorageError",
    "ProfileSummaries",
    "ProfileSummaryGenerator",
    "SessionTopicAggregator",
    "ShortTermProfile",
    "TopicScore",
    "describe_ltp",
    "merge",
    "normalize",
    "top_topics",
]

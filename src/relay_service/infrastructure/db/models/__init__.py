"""Import all models so Base.metadata sees every table."""
from relay_service.infrastructure.db.models.conversation import ConversationModel
from relay_service.infrastructure.db.models.message import MessageModel
from relay_service.infrastructure.db.models.profile import ProfileModel
from relay_service.infrastructure.db.models.usage import UsageModel

__all__ = [
    "ConversationModel",
    "MessageModel",
    "ProfileModel",
    "UsageModel",
]

from messaging_toolkit.sync.conversation_index import ConversationIndex, ConversationView
from messaging_toolkit.sync.dispatcher import LiveUpdateDispatcher
from messaging_toolkit.sync.identity import OnboardingState, ProfileGate
from messaging_toolkit.sync.message_timeline import MessageTimeline
from messaging_toolkit.sync.presence import PresenceReporter
from messaging_toolkit.sync.timeline import ConfirmedEntry, PendingEntry, Timeline

__all__ = [
    "ConfirmedEntry",
    "ConversationIndex",
    "ConversationView",
    "LiveUpdateDispatcher",
    "MessageTimeline",
    "OnboardingState",
    "PendingEntry",
    "PresenceReporter",
    "ProfileGate",
    "Timeline",
]

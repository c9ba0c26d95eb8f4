from .conversation import ConversationStore, InMemoryConversationStore

__all__ = ["ConversationStore", "InMemoryConversationStore"]

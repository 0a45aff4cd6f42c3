"""
Error hierarchy shared by every component.

All failures raised by the toolkit derive from 'MessagingError' so callers can
catch the whole family in one place. The subclasses follow four families that
decide how a caller reacts:

    'ValidationError' - bad input, rejected synchronously, never retried.
    'TransientError'  - infrastructure hiccup (store down, model timeout, rate
                        limit). 'retryable' is True; see 'utils.retry'.
    'IntegrityError'  - conflicting persisted state (archive id collision,
                        vector id reuse). Logged and surfaced, never retried.
    'NotFoundError'   - the referenced conversation or message does not exist
                        in the store the operation targets.
"""


class MessagingError(Exception):
    """Base class for all toolkit errors."""

    retryable: bool = False


class ValidationError(MessagingError):
    pass


class NotAMember(ValidationError):
    def __init__(self, user_id: str, conversation_id: str):
        super().__init__(f"User {user_id} is not a member of conversation {conversation_id}")
        self.user_id = user_id
        self.conversation_id = conversation_id


class InvalidMembership(ValidationError):
    pass


class EmptyMessageText(ValidationError):
    def __init__(self) -> None:
        super().__init__("Message text must not be empty")


class UnsupportedLanguage(ValidationError):
    def __init__(self, language: str):
        super().__init__(f"Unsupported target language {language!r}")
        self.language = language


class InvalidTopK(ValidationError):
    def __init__(self, top_k: int):
        super().__init__(f"top_k must be positive, got {top_k}")
        self.top_k = top_k


class NotFoundError(MessagingError):
    pass


class ConversationNotFound(NotFoundError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation with id {conversation_id} not found")
        self.conversation_id = conversation_id


class MessageNotFound(NotFoundError):
    def __init__(self, conversation_id: str, message_id: str):
        super().__init__(f"Message {message_id} not found in conversation {conversation_id}")
        self.conversation_id = conversation_id
        self.message_id = message_id


class PermissionDenied(MessagingError):
    pass


class TransientError(MessagingError):
    retryable = True


class StoreUnavailable(TransientError):
    pass


class ModelTimeout(TransientError):
    pass


class ModelUnavailable(TransientError):
    pass


class RateLimited(TransientError):
    """The caller exceeded a quota. 'retry_after' is in seconds."""

    def __init__(self, retry_after: float, action: str = ""):
        label = f" for {action}" if action else ""
        super().__init__(f"Rate limit exceeded{label}, retry after {retry_after:.0f}s")
        self.retry_after = retry_after
        self.action = action


class IntegrityError(MessagingError):
    pass


class DuplicateMessageId(IntegrityError):
    def __init__(self, conversation_id: str, message_id: str):
        super().__init__(
            f"Message id {message_id} already exists in conversation {conversation_id} with different content"
        )
        self.conversation_id = conversation_id
        self.message_id = message_id


class EmbeddingConflict(IntegrityError):
    def __init__(self, vector_id: str):
        super().__init__(f"Vector {vector_id} already exists with different metadata")
        self.vector_id = vector_id


class EmbeddingFailed(MessagingError):
    pass


class InsightGenerationFailed(MessagingError):
    """Wraps the underlying failure. Inherits its retry semantics so callers can back off."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.retryable = getattr(cause, "retryable", False)
        self.retry_after: float | None = getattr(cause, "retry_after", None)


class TranslationFailed(MessagingError):
    pass


class MalformedModelResponse(MessagingError):
    def __init__(self, content: str, reason: str = ""):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Model returned a malformed response{detail}")
        self.content = content

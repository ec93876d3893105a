"""Error taxonomy.

Validation and state errors are raised straight to the caller. Collaborator
failures surface as ``UpstreamError`` with the underlying exception chained.
"""


class TopicRAGError(Exception):
    """Base class for all topicrag errors."""


class ValidationError(TopicRAGError):
    """Empty, oversized or malformed topic / question input."""


class NoTopicError(TopicRAGError):
    """A question was asked before a topic was set, or the topic is unknown."""


class NoDataFoundError(TopicRAGError):
    """Ingestion collected zero chunks for a topic."""


class ConsistencyError(TopicRAGError):
    """Parallel arrays handed to the vector store differ in length."""


class UpstreamError(TopicRAGError):
    """A collaborator (search, embedding, generation, vector store) failed."""

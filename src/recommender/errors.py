"""Exception types raised by the recommendation engine."""


class RecommenderError(Exception):
    """Base class for engine errors."""


class ProviderUnavailable(RecommenderError):
    """The embedding provider could not produce a vector for this call."""


class EmbeddingGenerationFailed(RecommenderError):
    """An embedding could not be generated for a content item."""


class DimensionMismatch(RecommenderError, ValueError):
    """Two vectors of different length were compared.

    Vectors produced by the same model always share a length, so this only
    happens when records from different models are mixed.
    """


class InternalError(RecommenderError):
    """Storage or other unexpected failure; surfaced as a 500."""

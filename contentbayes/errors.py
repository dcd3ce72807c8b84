"""Exceptions raised by the content-based Naive Bayes recommender."""


class ContentBayesError(Exception):
    """Base class for all recommender errors."""


class IngestionError(ContentBayesError):
    """Reading an input file failed. Carries the path and the underlying cause."""

    def __init__(self, path, cause: Exception):
        self.path = str(path)
        self.cause = cause
        super().__init__(f"Error reading file: {self.path} ({cause})")


class ValidationError(ContentBayesError, ValueError):
    """Malformed rating data (negative ratings, out-of-range indices, shape mismatch)."""


class ProfileLookupError(ContentBayesError, LookupError):
    """Prediction requested for an untrained user, an unknown item or an unknown label."""

"""
User Rating Profiles
====================

Per-user Naive Bayes statistics learned from the user's rating history:
class priors for "liked" / "not liked" and, for every feature seen in the
rated items, Laplace-smoothed likelihoods under each class.
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, NamedTuple, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix, issparse

from contentbayes.errors import ValidationError

logger = logging.getLogger(__name__)

# Laplace smoothing constant
ALPHA = 0.01


class FeatureLikelihood(NamedTuple):
    """P(feature | Like) and P(feature | NotLike)."""
    like: float
    not_like: float


def _rated_items(rating_vector, num_items: int) -> Tuple[np.ndarray, np.ndarray]:
    """Extract (item indices, ratings) of the non-zero entries of a sparse rating row."""
    if issparse(rating_vector):
        row = csr_matrix(rating_vector)
        if row.shape[0] != 1:
            raise ValidationError(f"Expected a single rating row, got shape {row.shape}")
        width = row.shape[1]
        indices, ratings = row.indices, row.data.astype(float)
    else:
        dense = np.asarray(rating_vector, dtype=float).ravel()
        width = dense.shape[0]
        indices = np.flatnonzero(dense)
        ratings = dense[indices]

    if width != num_items:
        raise ValidationError(f"Rating row covers {width} items but the catalogue has {num_items}")

    rated = ratings != 0
    indices, ratings = indices[rated], ratings[rated]

    if not np.all(np.isfinite(ratings)):
        raise ValidationError("Ratings must be finite numbers")
    if np.any(ratings < 0):
        raise ValidationError(f"Negative rating(s): {ratings[ratings < 0].tolist()}")
    if indices.size and (indices.min() < 0 or indices.max() >= num_items):
        raise ValidationError(f"Rated item index out of range [0, {num_items})")
    return indices, ratings


class UserRatingProfile:
    """
    Trained Naive Bayes statistics for one user. Read-only once built.

    Attributes:
        num_rated, num_liked, num_not_liked (int): Rating counts.
        p_like, p_not_like (float): Smoothed class priors P(L), P(~L).
        feature_counts (Mapping[int, Tuple[int, int]]): feature -> (# liked items with it, # not liked items with it).
        feature_probabilities (Mapping[int, FeatureLikelihood]): feature -> (P(f|L), P(f|~L)).
        unseen (FeatureLikelihood): Likelihoods used for features the user never encountered.
    """

    def __init__(self, num_liked: int, num_not_liked: int, feature_counts: Dict[int, List[int]]):
        self.num_liked = num_liked
        self.num_not_liked = num_not_liked
        self.num_rated = num_liked + num_not_liked

        self.p_like = (num_liked + ALPHA) / (self.num_rated + 2 * ALPHA)
        self.p_not_like = 1.0 - self.p_like

        like_denominator = num_liked + 2 * ALPHA
        not_like_denominator = num_not_liked + 2 * ALPHA

        self.feature_counts = MappingProxyType({f: tuple(c) for f, c in feature_counts.items()})
        self.feature_probabilities = MappingProxyType({
            feature: FeatureLikelihood((like + ALPHA) / like_denominator,
                                       (not_like + ALPHA) / not_like_denominator)
            for feature, (like, not_like) in self.feature_counts.items()
        })
        self.unseen = FeatureLikelihood(ALPHA / like_denominator, ALPHA / not_like_denominator)

    @classmethod
    def train(cls, rating_vector, feature_matrix: csr_matrix, rating_threshold: float) -> 'UserRatingProfile':
        """
        Build a profile from one user's ratings.

        Args:
            rating_vector: Sparse 1 x n_items row (or dense array) of ratings, 0 = unrated.
            feature_matrix (csr_matrix): Item x feature presence matrix.
            rating_threshold (float): Ratings >= threshold count as liked.

        Returns:
            UserRatingProfile: The trained profile.

        Raises:
            ValidationError: On negative / non-finite ratings or out-of-range item indices.
        """
        feature_matrix = feature_matrix.tocsr() if issparse(feature_matrix) else csr_matrix(feature_matrix)
        indices, ratings = _rated_items(rating_vector, feature_matrix.shape[0])
        liked = ratings >= rating_threshold

        feature_counts: Dict[int, List[int]] = {}
        indptr, feature_indices = feature_matrix.indptr, feature_matrix.indices
        for item, user_liked in zip(indices, liked):
            for feature in feature_indices[indptr[item]:indptr[item + 1]]:
                counts = feature_counts.setdefault(int(feature), [0, 0])
                if user_liked:
                    counts[0] += 1
                else:
                    counts[1] += 1

        num_liked = int(liked.sum())
        logger.debug(f"Profile: {len(ratings)} rated, {num_liked} liked, {len(feature_counts)} features")
        return cls(num_liked, len(ratings) - num_liked, feature_counts)

    def __reduce__(self):
        # mappingproxy cannot be pickled; rebuild from the counts instead
        counts = {f: list(c) for f, c in self.feature_counts.items()}
        return self.__class__, (self.num_liked, self.num_not_liked, counts)

    def likelihood(self, feature: int) -> FeatureLikelihood:
        """Likelihood pair for a feature, falling back to the unseen pair."""
        return self.feature_probabilities.get(feature, self.unseen)

    def to_frame(self) -> pd.DataFrame:
        """Feature counts and probabilities as a DataFrame indexed by feature id."""
        frame = pd.DataFrame(
            [(f, *self.feature_counts[f], p.like, p.not_like) for f, p in self.feature_probabilities.items()],
            columns=['feature', 'count_like', 'count_not_like', 'p_like', 'p_not_like'],
        )
        return frame.set_index('feature').sort_index()

    def __str__(self) -> str:
        def dict_to_string(mapping: Mapping) -> str:
            entries = ''.join(f" Feature {f} : [{v[0]}, {v[1]}]," for f, v in sorted(mapping.items()))
            return '{' + entries + '}'

        return '\n'.join([
            f"Number of Items Liked: {self.num_liked}",
            f"Number of Items Not Liked: {self.num_not_liked}",
            f"P(L): {self.p_like}",
            f"P(~L): {self.p_not_like}",
            f"Feature count: {dict_to_string(self.feature_counts)}",
            f"Feature probabilities: {dict_to_string(self.feature_probabilities)}",
            f"Unseen feature probabilities: [{self.unseen.like}, {self.unseen.not_like}]",
        ])

    def __repr__(self) -> str:
        return (f"UserRatingProfile(num_liked={self.num_liked}, num_not_liked={self.num_not_liked}, "
                f"features={len(self.feature_probabilities)})")

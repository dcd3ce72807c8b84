"""
Naive Bayes Content-Based Recommender
=====================================

Learns, per user, a Naive Bayes model of "liked" vs "not liked" conditioned
on binary item features, and turns the posterior log-odds back into a
rating on the 1-5 scale.

Pipeline:
    1. setup()        - load the item feature catalogue.
    2. train_model()  - build one UserRatingProfile per rating row.
    3. predict()      - combine priors and feature likelihoods for (user, item).
"""

import argparse
import logging
import time
from multiprocessing import Pool, cpu_count
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import issparse
from scipy.special import expit
from sklearn.metrics import mean_absolute_error, mean_squared_error

from contentbayes.content import ItemFeatures, load_item_features
from contentbayes.errors import ProfileLookupError, ValidationError
from contentbayes.ratings import RatingMatrix, RatingsDataLoader
from contentbayes.user_profile import UserRatingProfile

logger = logging.getLogger(__name__)

# Output rating scale: sigmoid(logit) * RATING_SPAN + MIN_RATING
MIN_RATING = 1.0
RATING_SPAN = 4.0
RATING_LOWER = np.nextafter(MIN_RATING, np.inf)
RATING_UPPER = np.nextafter(MIN_RATING + RATING_SPAN, -np.inf)


class NaiveBayesRecommenderConfig:
    """Configuration parameters for the Naive Bayes recommender."""

    def __init__(self, **overrides):
        # Data
        self.content_path = None            # Item feature catalogue
        self.ratings_path = None            # Ratings CSV (userId, itemId, rating)
        self.encoding = 'utf-8'
        self.user_column = 'userId'
        self.item_column = 'itemId'
        self.rating_column = 'rating'

        # Model
        self.rating_threshold = 3.0         # Rating >= threshold counts as liked

        # Evaluation & Recommendations
        self.test_size = 0.2
        self.random_state = 42
        self.top_n_recommendations = 10

        # Execution
        self.use_parallel = False
        self.num_processes = None

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise AttributeError(f"Unknown configuration parameter: {name}")
            setattr(self, name, value)


def predict_rating(profile: UserRatingProfile, item_feature_indices: Iterable[int]) -> float:
    """
    Predict a rating from a trained profile and an item's feature indices.

    The posterior P(L | features) is computed as a log-odds sum:
        logit = ln P(L) + sum ln P(f|L) - ln P(~L) - sum ln P(f|~L)
    which equals ln(pY) - ln(pN) of the normalised posterior, without the
    products underflowing for items with many features. Features the user
    never saw use the profile's unseen-feature likelihoods.

    Returns:
        float: sigmoid(logit) * 4 + 1, inside (1, 5).
    """
    log_like = np.log(profile.p_like)
    log_not_like = np.log(profile.p_not_like)
    for feature in item_feature_indices:
        likelihood = profile.likelihood(int(feature))
        log_like += np.log(likelihood.like)
        log_not_like += np.log(likelihood.not_like)

    logit = log_like - log_not_like
    rating = expit(logit) * RATING_SPAN + MIN_RATING
    # expit saturates to 0 or 1 in double precision; keep the result inside the open interval
    return float(np.clip(rating, RATING_LOWER, RATING_UPPER))


class NaiveBayesRecommender:
    """Content-based recommender holding the item catalogue and per-user profiles."""

    def __init__(self, config: NaiveBayesRecommenderConfig = None, item_features: ItemFeatures = None):
        """Initialize with configuration; item_features may be supplied instead of calling setup()."""
        self.config = config or NaiveBayesRecommenderConfig()
        self.item_features = item_features
        self.user_profiles: List[UserRatingProfile] = []
        self.train_matrix = None

    def setup(self) -> ItemFeatures:
        """
        Load the item feature catalogue from config.content_path.

        Raises:
            IngestionError: If the file cannot be read.
        """
        content_path = self.config.content_path
        if content_path is None:
            raise ValueError("config.content_path is not set")
        self.item_features = load_item_features(content_path, encoding=self.config.encoding)
        logger.info(f"Loaded item features from {content_path}")
        return self.item_features

    def _require_catalogue(self) -> ItemFeatures:
        if self.item_features is None:
            raise ProfileLookupError("Item features not loaded; call setup() first")
        return self.item_features

    def _train_user(self, user_idx: int) -> UserRatingProfile:
        """Helper for (parallel) training of a single user."""
        return UserRatingProfile.train(self.train_matrix[user_idx], self.item_features.matrix,
                                       self.config.rating_threshold)

    def train_model(self, rating_matrix) -> List[UserRatingProfile]:
        """
        Build one profile per user row of the rating matrix.

        Args:
            rating_matrix: RatingMatrix or scipy sparse (n_users, n_items) matrix, 0 = unrated.

        Returns:
            List[UserRatingProfile]: Profiles indexed by user row.

        Raises:
            ValidationError: If any user's ratings are malformed. The whole pass fails;
                previously trained profiles are kept untouched.
        """
        catalogue = self._require_catalogue()
        matrix = rating_matrix.matrix if isinstance(rating_matrix, RatingMatrix) else rating_matrix
        if not issparse(matrix):
            raise ValidationError("Rating matrix must be a scipy sparse matrix")
        matrix = matrix.tocsr()
        if matrix.shape[1] != catalogue.num_items:
            raise ValidationError(f"Rating matrix has {matrix.shape[1]} item columns, "
                                  f"catalogue has {catalogue.num_items} items")

        num_users = matrix.shape[0]
        logger.info(f"Training profiles for {num_users} users (threshold={self.config.rating_threshold})")
        start_time = time.time()
        previous_matrix, self.train_matrix = self.train_matrix, matrix

        try:
            if self.config.use_parallel and num_users > 100:
                num_proc = self.config.num_processes or max(1, cpu_count() - 1)
                logger.info(f"Parallel training: {num_proc} processes")
                with Pool(processes=num_proc) as pool:
                    chunk = max(1, num_users // (num_proc * 4))
                    profiles = pool.map(self._train_user, range(num_users), chunksize=chunk)
            else:
                profiles = []
                for user_idx in range(num_users):
                    if user_idx % 1000 == 0:
                        logger.info(f"Trained {user_idx}/{num_users}")
                    profiles.append(self._train_user(user_idx))
        except ValidationError as e:
            logger.error(f"Training failed: {e}")
            self.train_matrix = previous_matrix
            raise

        self.user_profiles = profiles
        logger.info(f"Training finished: {len(profiles)} profiles in {time.time() - start_time:.2f}s")
        return profiles

    def get_profile(self, user_idx: int) -> UserRatingProfile:
        if not 0 <= user_idx < len(self.user_profiles):
            raise ProfileLookupError(f"No trained profile for user index {user_idx}")
        return self.user_profiles[user_idx]

    def predict(self, user_idx: int, item_idx: int) -> float:
        """
        Predict the rating of user_idx for item_idx.

        Raises:
            ProfileLookupError: Untrained user or item outside the catalogue.
        """
        profile = self.get_profile(user_idx)
        item_features = self._require_catalogue().features_of(item_idx)
        return predict_rating(profile, item_features)

    def predict_many(self, pairs: Iterable[Tuple[int, int]]) -> np.ndarray:
        return np.array([self.predict(u, i) for u, i in pairs], dtype=float)

    def recommend_for_user(self, user_idx: int, top_n: Optional[int] = None) -> List[Tuple[int, float]]:
        """
        Rank the items the user has not rated by predicted rating.

        Returns:
            List[Tuple[int, float]]: (item index, predicted rating), best first.
        """
        if top_n is None:
            top_n = self.config.top_n_recommendations
        profile = self.get_profile(user_idx)
        catalogue = self._require_catalogue()

        rated = set()
        if self.train_matrix is not None:
            row = self.train_matrix[user_idx]
            rated = set(row.indices[row.data != 0].tolist())

        scores = [(item_idx, predict_rating(profile, catalogue.features_of(item_idx)))
                  for item_idx in range(catalogue.num_items) if item_idx not in rated]
        scores.sort(key=lambda x: x[1], reverse=True)
        return scores[:top_n]

    def evaluate(self, test_matrix) -> Dict[str, float]:
        """
        Predict every rating in a held-out matrix and report RMSE / MAE.

        Args:
            test_matrix: RatingMatrix or sparse matrix sharing the training axes.
        """
        matrix = test_matrix.matrix if isinstance(test_matrix, RatingMatrix) else test_matrix
        coo = matrix.tocoo()
        if coo.nnz == 0:
            logger.error("No test ratings to evaluate.")
            return {}

        logger.info(f"Evaluating {coo.nnz} held-out ratings")
        predictions = self.predict_many(zip(coo.row.tolist(), coo.col.tolist()))
        actual = coo.data.astype(float)
        return {
            'rmse': float(np.sqrt(mean_squared_error(actual, predictions))),
            'mae': float(mean_absolute_error(actual, predictions)),
            'num_predictions': int(coo.nnz),
        }

    @staticmethod
    def _print_results_summary(results: Dict[str, float], title: str = "RESULTS") -> None:
        """Output formatted metrics to console."""
        if not results: return
        print(f"\n=== {title} ===")
        print(f"Predictions: {results['num_predictions']}")
        print(f"  RMSE: {results['rmse']:.4f}")
        print(f"  MAE:  {results['mae']:.4f}")


def main(argv: Optional[Sequence[str]] = None) -> Dict[str, float]:
    """
    Entry point.
    1. Load item features and ratings.
    2. Split ratings, train profiles, evaluate.
    3. Optionally print one user's recommendations and profile.
    """
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    parser = argparse.ArgumentParser(description="Content-based Naive Bayes rating predictor")
    parser.add_argument("--content", required=True, help="item feature file (item feature feature ...)")
    parser.add_argument("--ratings", required=True, help="ratings CSV with userId,itemId,rating columns")
    parser.add_argument("--threshold", type=float, default=3.0, help="rating >= threshold counts as liked")
    parser.add_argument("--test-size", type=float, default=0.2, help="fraction of ratings held out")
    parser.add_argument("--parallel", action="store_true", help="train user profiles in a process pool")
    parser.add_argument("--user", type=str, default=None, help="user label to show recommendations for")
    parser.add_argument("--top", type=int, default=10, help="top-N recommendations")
    args = parser.parse_args(argv)

    config = NaiveBayesRecommenderConfig(
        content_path=args.content,
        ratings_path=args.ratings,
        rating_threshold=args.threshold,
        test_size=args.test_size,
        use_parallel=args.parallel,
        top_n_recommendations=args.top,
    )
    recommender = NaiveBayesRecommender(config)
    item_features = recommender.setup()

    loader = RatingsDataLoader(config.ratings_path, item_features, config.user_column,
                               config.item_column, config.rating_column)
    ratings_df, _ = loader.load()
    train_matrix, test_matrix = loader.split_ratings(ratings_df, config.test_size, config.random_state)

    recommender.train_model(train_matrix)
    results = recommender.evaluate(test_matrix)
    recommender._print_results_summary(results, title="EVALUATION")

    if args.user is not None:
        user_idx = train_matrix.user_index(args.user)
        print(f"\nUser {args.user}:")
        print(recommender.get_profile(user_idx))
        print("  [PREDICTION] Suggested:")
        for item_idx, rating in recommender.recommend_for_user(user_idx):
            print(f"    - {item_features.item_labels[item_idx]} ({rating:.3f})")

    return results


if __name__ == "__main__":
    main()

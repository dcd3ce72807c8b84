"""
Content-based Naive Bayes rating predictor.

Items are described by binary features; each user gets a Naive Bayes model
over "liked" vs "not liked" that is turned back into a 1-5 rating.
"""

from contentbayes.content import FeatureLoader, ItemFeatures, load_item_features
from contentbayes.errors import ContentBayesError, IngestionError, ProfileLookupError, ValidationError
from contentbayes.naive_bayes import NaiveBayesRecommender, NaiveBayesRecommenderConfig, predict_rating
from contentbayes.ratings import RatingMatrix, RatingsDataLoader
from contentbayes.user_profile import ALPHA, FeatureLikelihood, UserRatingProfile

__all__ = [
    'ALPHA',
    'ContentBayesError',
    'FeatureLikelihood',
    'FeatureLoader',
    'IngestionError',
    'ItemFeatures',
    'NaiveBayesRecommender',
    'NaiveBayesRecommenderConfig',
    'ProfileLookupError',
    'RatingMatrix',
    'RatingsDataLoader',
    'UserRatingProfile',
    'ValidationError',
    'load_item_features',
    'predict_rating',
]

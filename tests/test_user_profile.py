import pickle

import numpy as np
import pytest
from scipy.sparse import csr_matrix

from contentbayes.errors import ValidationError
from contentbayes.user_profile import ALPHA, FeatureLikelihood, UserRatingProfile


def train_scenario(item_features, scenario_ratings, threshold=3.0):
    return UserRatingProfile.train(scenario_ratings[0], item_features.matrix, threshold)


def test_counts_follow_threshold(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    assert profile.num_liked == 2
    assert profile.num_not_liked == 1
    assert profile.num_rated == 3


def test_feature_counts(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    f = item_features.feature_ids
    assert profile.feature_counts[f["f1"]] == (1, 1)
    assert profile.feature_counts[f["f2"]] == (1, 0)
    assert profile.feature_counts[f["f3"]] == (1, 0)


def test_priors_are_smoothed_and_sum_to_one(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    assert profile.p_like == pytest.approx((2 + ALPHA) / (3 + 2 * ALPHA))
    assert profile.p_not_like == pytest.approx((1 + ALPHA) / (3 + 2 * ALPHA))
    assert profile.p_like + profile.p_not_like == pytest.approx(1.0)
    assert 0 < profile.p_like < 1
    assert 0 < profile.p_not_like < 1


def test_feature_likelihoods(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    f1 = profile.feature_probabilities[item_features.feature_index("f1")]
    f3 = profile.feature_probabilities[item_features.feature_index("f3")]
    assert f1.like == pytest.approx((1 + ALPHA) / (2 + 2 * ALPHA))
    assert f1.not_like == pytest.approx((1 + ALPHA) / (1 + 2 * ALPHA))
    assert f3.like == pytest.approx((1 + ALPHA) / (2 + 2 * ALPHA))
    assert f3.not_like == pytest.approx(ALPHA / (1 + 2 * ALPHA))
    for likelihood in profile.feature_probabilities.values():
        assert 0 < likelihood.like < 1
        assert 0 < likelihood.not_like < 1


def test_unseen_fallback(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    assert profile.unseen == pytest.approx((ALPHA / (2 + 2 * ALPHA), ALPHA / (1 + 2 * ALPHA)))
    assert profile.likelihood(12345) is profile.unseen
    assert isinstance(profile.likelihood(item_features.feature_index("f1")), FeatureLikelihood)


def test_user_without_ratings(item_features, scenario_ratings):
    profile = UserRatingProfile.train(scenario_ratings[1], item_features.matrix, 3.0)
    assert profile.num_rated == 0
    assert profile.p_like == pytest.approx(0.5)
    assert profile.p_not_like == pytest.approx(0.5)
    assert len(profile.feature_probabilities) == 0
    assert profile.unseen == pytest.approx((0.5, 0.5))


def test_user_who_liked_everything(item_features):
    ratings = csr_matrix(np.array([[5.0, 4.0, 3.0, 0.0, 0.0]]))
    profile = UserRatingProfile.train(ratings, item_features.matrix, 3.0)
    assert profile.num_not_liked == 0
    assert profile.p_not_like == pytest.approx(ALPHA / (3 + 2 * ALPHA))
    assert profile.p_not_like > 0


def test_explicit_zeros_are_unrated(item_features):
    ratings = csr_matrix((np.array([0.0, 4.0]), (np.array([0, 0]), np.array([0, 2]))), shape=(1, 5))
    profile = UserRatingProfile.train(ratings, item_features.matrix, 3.0)
    assert profile.num_rated == 1


def test_dense_rating_row_is_accepted(item_features):
    profile = UserRatingProfile.train([5.0, 2.0, 4.0, 0.0, 0.0], item_features.matrix, 3.0)
    assert (profile.num_liked, profile.num_not_liked) == (2, 1)


def test_profile_is_order_independent(item_features):
    forward = UserRatingProfile.train([5.0, 2.0, 4.0, 1.0, 0.0], item_features.matrix, 3.0)
    # Same ratings presented with unsorted column indices
    shuffled = csr_matrix((np.array([1.0, 4.0, 5.0, 2.0]), np.array([3, 2, 0, 1]), np.array([0, 4])), shape=(1, 5))
    backward = UserRatingProfile.train(shuffled, item_features.matrix, 3.0)
    assert dict(forward.feature_probabilities) == dict(backward.feature_probabilities)
    assert forward.p_like == backward.p_like


def test_negative_rating_is_rejected(item_features):
    with pytest.raises(ValidationError):
        UserRatingProfile.train([5.0, -1.0, 0.0, 0.0, 0.0], item_features.matrix, 3.0)


def test_non_finite_rating_is_rejected(item_features):
    with pytest.raises(ValidationError):
        UserRatingProfile.train([np.nan, 1.0, 0.0, 0.0, 0.0], item_features.matrix, 3.0)


def test_rating_row_wider_than_catalogue_is_rejected(item_features):
    with pytest.raises(ValidationError):
        UserRatingProfile.train([0.0] * 5 + [4.0], item_features.matrix, 3.0)


def test_rating_row_narrower_than_catalogue_is_rejected(item_features):
    with pytest.raises(ValidationError):
        UserRatingProfile.train([5.0, 4.0], item_features.matrix, 3.0)
    with pytest.raises(ValidationError):
        UserRatingProfile.train(csr_matrix(np.array([[5.0, 4.0, 0.0]])), item_features.matrix, 3.0)


def test_profile_is_read_only(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    with pytest.raises(TypeError):
        profile.feature_probabilities[99] = FeatureLikelihood(0.5, 0.5)


def test_profile_survives_pickling(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    restored = pickle.loads(pickle.dumps(profile))
    assert restored.p_like == profile.p_like
    assert dict(restored.feature_probabilities) == dict(profile.feature_probabilities)
    assert restored.unseen == profile.unseen


def test_human_readable_dump(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    text = str(profile)
    assert "Number of Items Liked: 2" in text
    assert "Number of Items Not Liked: 1" in text
    assert "P(L): " in text and "P(~L): " in text
    assert "Feature probabilities: {" in text
    assert "Unseen feature probabilities" in text


def test_to_frame(item_features, scenario_ratings):
    profile = train_scenario(item_features, scenario_ratings)
    frame = profile.to_frame()
    assert list(frame.columns) == ["count_like", "count_not_like", "p_like", "p_not_like"]
    assert len(frame) == 3
    assert frame.loc[item_features.feature_index("f1"), "count_not_like"] == 1

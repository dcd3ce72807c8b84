"""
Rating Matrix Loading
=====================

Reads user ratings from CSV and lays them out as a sparse users x items
matrix whose item axis is the item catalogue's row axis, so a rating row
can be joined directly against the feature matrix.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix
from sklearn.model_selection import train_test_split

from contentbayes.content import ItemFeatures
from contentbayes.errors import IngestionError, ProfileLookupError, ValidationError

logger = logging.getLogger(__name__)


class RatingMatrix:
    """
    Sparse users x items ratings (0 = unrated) plus the user label axis.

    Attributes:
        matrix (csr_matrix): (n_users, n_items) ratings.
        user_labels (Tuple[str, ...]): Row index -> user label.
        user_ids (dict): User label -> row index.
    """

    def __init__(self, matrix: csr_matrix, user_labels: Sequence[str]):
        if matrix.shape[0] != len(user_labels):
            raise ValidationError(f"{len(user_labels)} user labels for a matrix with {matrix.shape[0]} rows")
        self.matrix = matrix.tocsr()
        self.user_labels = tuple(user_labels)
        self.user_ids = {label: idx for idx, label in enumerate(self.user_labels)}

    @property
    def num_users(self) -> int:
        return self.matrix.shape[0]

    @property
    def num_items(self) -> int:
        return self.matrix.shape[1]

    def row(self, user_idx: int) -> csr_matrix:
        return self.matrix[user_idx]

    def user_index(self, label: str) -> int:
        try:
            return self.user_ids[label]
        except KeyError:
            raise ProfileLookupError(f"Unknown user label: {label!r}") from None

    def __repr__(self) -> str:
        return f"RatingMatrix(users={self.num_users}, items={self.num_items}, ratings={self.matrix.nnz})"


class RatingsDataLoader:
    """Loading pipeline for a ratings CSV (user, item, rating columns)."""

    def __init__(self, file_path, item_features: ItemFeatures,
                 user_column: str = 'userId', item_column: str = 'itemId', rating_column: str = 'rating'):
        self.file_path = file_path
        self.item_features = item_features
        self.user_column = user_column
        self.item_column = item_column
        self.rating_column = rating_column

    def load_data(self) -> pd.DataFrame:
        """Read the raw ratings file. Failures raise IngestionError."""
        logger.info(f"Loading ratings data from {self.file_path}")
        try:
            df = pd.read_csv(
                self.file_path,
                usecols=[self.user_column, self.item_column, self.rating_column],
                dtype={self.user_column: str, self.item_column: str},
            )
        except (OSError, ValueError, pd.errors.ParserError) as e:
            logger.error(f"Error loading ratings data: {e}")
            raise IngestionError(self.file_path, e) from e
        logger.info(f"Loaded {len(df)} records from {self.file_path}")
        return df

    def clean_ratings(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Validate rating values and restrict to catalogue items.

        - Non-numeric ratings are dropped.
        - Negative ratings raise ValidationError.
        - Zero ratings are dropped (0 means "unrated" in the sparse matrix).
        - Items missing from the catalogue are dropped.
        - For duplicate (user, item) pairs the last rating wins.
        """
        logger.info("Cleaning rating values")
        df = df.copy()
        df[self.rating_column] = pd.to_numeric(df[self.rating_column], errors='coerce')

        invalid = df[self.rating_column].isna() | df[self.user_column].isna() | df[self.item_column].isna()
        if invalid.sum() > 0:
            logger.warning(f"Dropping {invalid.sum()} records with missing or non-numeric values")
            df = df[~invalid]

        negative = df[self.rating_column] < 0
        if negative.any():
            logger.error(f"Found {negative.sum()} negative ratings")
            raise ValidationError(f"{negative.sum()} negative ratings in {self.file_path}")

        zero = df[self.rating_column] == 0
        if zero.any():
            logger.warning(f"Dropping {zero.sum()} zero ratings")
            df = df[~zero]

        known = df[self.item_column].isin(list(self.item_features.item_ids))
        if (~known).sum() > 0:
            logger.warning(f"Dropping {(~known).sum()} ratings for items missing from the catalogue")
            df = df[known]

        df = df.drop_duplicates(subset=[self.user_column, self.item_column], keep='last')
        logger.info(f"Ratings cleaning complete: {len(df)} records, {df[self.user_column].nunique()} users")
        return df.reset_index(drop=True)

    def build_matrix(self, df: pd.DataFrame, user_labels: Optional[List[str]] = None) -> RatingMatrix:
        """
        Lay cleaned ratings out as a RatingMatrix.

        Args:
            df (pd.DataFrame): Cleaned ratings.
            user_labels (List[str], optional): Fixed user axis, so several matrices
                (e.g. train and test) share row indices. Defaults to the users of df
                in order of first appearance.
        """
        if user_labels is None:
            user_labels = df[self.user_column].drop_duplicates().tolist()
        user_ids = {label: idx for idx, label in enumerate(user_labels)}

        unknown_users = ~df[self.user_column].isin(list(user_ids))
        if unknown_users.any():
            raise ValidationError(f"{unknown_users.sum()} ratings from users outside the given user axis")

        rows = df[self.user_column].map(user_ids).to_numpy(dtype=np.int64)
        cols = df[self.item_column].map(dict(self.item_features.item_ids)).to_numpy(dtype=np.int64)
        values = df[self.rating_column].to_numpy(dtype=float)

        matrix = csr_matrix((values, (rows, cols)), shape=(len(user_labels), self.item_features.num_items))
        return RatingMatrix(matrix, user_labels)

    def load(self) -> Tuple[pd.DataFrame, RatingMatrix]:
        """Full pipeline: read, clean, build. Returns the cleaned frame and its matrix."""
        df = self.clean_ratings(self.load_data())
        rating_matrix = self.build_matrix(df)
        logger.info(f"Users: {rating_matrix.num_users}, Items: {rating_matrix.num_items}, "
                    f"Ratings: {rating_matrix.matrix.nnz}")
        return df, rating_matrix

    def split_ratings(self, df: pd.DataFrame, test_size: float = 0.2,
                      random_state: int = 42) -> Tuple[RatingMatrix, RatingMatrix]:
        """
        Random per-rating train/test split. Both matrices share the same user and item axes.
        """
        logger.info(f"Splitting {len(df)} ratings (test_size={test_size})")
        user_labels = df[self.user_column].drop_duplicates().tolist()
        train_df, test_df = train_test_split(df, test_size=test_size, random_state=random_state)
        train_matrix = self.build_matrix(train_df, user_labels)
        test_matrix = self.build_matrix(test_df, user_labels)
        logger.info(f"Train ratings: {train_matrix.matrix.nnz}, Test ratings: {test_matrix.matrix.nnz}")
        return train_matrix, test_matrix

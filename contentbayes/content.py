"""
Item Feature Loading
====================

Reads the item catalogue: one item per line, the first token is the item
label and every following token is a feature the item has. Tokens are
separated by any run of spaces, tabs or commas. Labels are given dense
integer ids in order of first sighting and the result is a sparse binary
item x feature matrix.
"""

import logging
import re
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Set, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

from contentbayes.errors import IngestionError, ProfileLookupError

logger = logging.getLogger(__name__)

TOKEN_DELIMITER = re.compile(r'[ \t,]+')


class ItemFeatures:
    """
    Immutable item catalogue produced by FeatureLoader.

    Attributes:
        matrix (csr_matrix): Binary (n_items, n_features) matrix, 1 = item has feature.
        item_ids (Mapping[str, int]): Item label -> row index.
        feature_ids (Mapping[str, int]): Feature label -> column index.
        item_labels (Tuple[str, ...]): Row index -> item label.
        feature_labels (Tuple[str, ...]): Column index -> feature label.
    """

    def __init__(self, item_labels: List[str], feature_labels: List[str], cells: Set[Tuple[int, int]]):
        self.item_labels = tuple(item_labels)
        self.feature_labels = tuple(feature_labels)
        self.item_ids = MappingProxyType({label: idx for idx, label in enumerate(self.item_labels)})
        self.feature_ids = MappingProxyType({label: idx for idx, label in enumerate(self.feature_labels)})

        # Cells are a set, so the constructor never sums duplicate coordinates
        rows = np.fromiter((r for r, _ in cells), dtype=np.int64, count=len(cells))
        cols = np.fromiter((c for _, c in cells), dtype=np.int64, count=len(cells))
        values = np.ones(len(cells), dtype=np.int8)
        self.matrix = csr_matrix((values, (rows, cols)), shape=(len(self.item_labels), len(self.feature_labels)))

    def __reduce__(self):
        coo = self.matrix.tocoo()
        cells = set(zip(coo.row.tolist(), coo.col.tolist()))
        return self.__class__, (list(self.item_labels), list(self.feature_labels), cells)

    @property
    def num_items(self) -> int:
        return self.matrix.shape[0]

    @property
    def num_features(self) -> int:
        return self.matrix.shape[1]

    def features_of(self, item_idx: int) -> np.ndarray:
        """Return the feature column indices present for an item (no particular order)."""
        if not 0 <= item_idx < self.num_items:
            raise ProfileLookupError(f"Item index {item_idx} outside catalogue of {self.num_items} items")
        start, end = self.matrix.indptr[item_idx], self.matrix.indptr[item_idx + 1]
        return self.matrix.indices[start:end]

    def item_index(self, label: str) -> int:
        try:
            return self.item_ids[label]
        except KeyError:
            raise ProfileLookupError(f"Unknown item label: {label!r}") from None

    def feature_index(self, label: str) -> int:
        try:
            return self.feature_ids[label]
        except KeyError:
            raise ProfileLookupError(f"Unknown feature label: {label!r}") from None

    def feature_labels_of(self, item_label: str) -> FrozenSet[str]:
        """Feature labels of an item, looked up by label."""
        indices = self.features_of(self.item_index(item_label))
        return frozenset(self.feature_labels[i] for i in indices)

    def to_frame(self) -> pd.DataFrame:
        """Long-format (item, feature) view of the catalogue, one row per cell."""
        coo = self.matrix.tocoo()
        frame = pd.DataFrame({
            'item': [self.item_labels[r] for r in coo.row],
            'feature': [self.feature_labels[c] for c in coo.col],
        })
        return frame.sort_values(['item', 'feature']).reset_index(drop=True)

    def __repr__(self) -> str:
        return f"ItemFeatures(items={self.num_items}, features={self.num_features}, cells={self.matrix.nnz})"


class FeatureLoader:
    """
    Builder that assigns dense ids on first sighting and collects matrix cells.

    A loader is used once: feed it lines (or item/feature lists) and call
    build() to get the immutable ItemFeatures.
    """

    def __init__(self):
        self._item_ids: Dict[str, int] = {}
        self._feature_ids: Dict[str, int] = {}
        self._cells: Set[Tuple[int, int]] = set()

    @staticmethod
    def _assign(ids: Dict[str, int], label: str) -> int:
        if label not in ids:
            ids[label] = len(ids)
        return ids[label]

    def add(self, item_label: str, feature_labels: Iterable[str]) -> int:
        """Register an item and its features. Returns the item's row index."""
        row = self._assign(self._item_ids, item_label)
        for feature in feature_labels:
            col = self._assign(self._feature_ids, feature)
            self._cells.add((row, col))
        return row

    def add_line(self, line: str) -> bool:
        """Parse one catalogue line. Returns False for blank lines."""
        tokens = [token for token in TOKEN_DELIMITER.split(line.strip()) if token]
        if not tokens:
            return False
        self.add(tokens[0], tokens[1:])
        return True

    def read(self, lines: Iterable[str]) -> int:
        """
        Consume a stream of lines. A last line without a terminator is skipped.

        Returns:
            int: Number of non-blank lines parsed.
        """
        parsed = 0
        for line in lines:
            if not line.endswith('\n'):
                if line.strip():
                    logger.warning(f"Skipping unterminated last line: {line[:40]!r}")
                break
            if self.add_line(line):
                parsed += 1
        return parsed

    def load(self, path, encoding: str = 'utf-8') -> int:
        """Read a catalogue file. Any I/O or decoding failure raises IngestionError."""
        try:
            with open(path, 'r', encoding=encoding) as handle:
                return self.read(handle)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading file: {path} {e}")
            raise IngestionError(path, e) from e

    def build(self) -> ItemFeatures:
        item_labels = sorted(self._item_ids, key=self._item_ids.get)
        feature_labels = sorted(self._feature_ids, key=self._feature_ids.get)
        return ItemFeatures(item_labels, feature_labels, set(self._cells))


def load_item_features(path, encoding: str = 'utf-8') -> ItemFeatures:
    """
    Load an item feature file into an ItemFeatures catalogue.

    Args:
        path: Path to the catalogue file.
        encoding (str): Text encoding of the file.

    Returns:
        ItemFeatures: Identifier maps plus the sparse item x feature matrix.

    Raises:
        IngestionError: If the file is missing, unreadable or not decodable.
    """
    loader = FeatureLoader()
    num_lines = loader.load(path, encoding=encoding)
    item_features = loader.build()
    logger.info(f"Parsed {num_lines} lines: {item_features.num_items} items, "
                f"{item_features.num_features} features, {item_features.matrix.nnz} cells")
    return item_features

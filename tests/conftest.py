import pytest
from scipy.sparse import csr_matrix

from contentbayes.content import load_item_features

CATALOGUE = (
    "item1 f1 f2\n"
    "item2 f1\n"
    "item3 f3\n"
    "item4\tf1,f3\n"
    "item5\n"
)


@pytest.fixture
def catalogue_path(tmp_path):
    path = tmp_path / "items.txt"
    path.write_text(CATALOGUE, encoding="utf-8")
    return path


@pytest.fixture
def item_features(catalogue_path):
    return load_item_features(catalogue_path)


@pytest.fixture
def scenario_ratings(item_features):
    """One user: item1=5, item2=2, item3=4; a second user with no ratings."""
    ids = item_features.item_ids
    rows = [0, 0, 0]
    cols = [ids["item1"], ids["item2"], ids["item3"]]
    values = [5.0, 2.0, 4.0]
    return csr_matrix((values, (rows, cols)), shape=(2, item_features.num_items))

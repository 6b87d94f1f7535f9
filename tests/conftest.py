import pytest

from layout import Geometry, Blueprint
from ngrams import NGramCorpus, RawNGrams, count_text_ngrams

SAMPLE_TEXT = (
    "die katze sitzt auf der matte und trinkt tee. "
    "der hund rennt durch den garten, die sonne scheint. "
    "an einem tag im sommer ist es in der stadt heiss und still."
)


def raw_from_text(text, weight=1.0, name="<test>"):
    letters, pairs, triples = count_text_ngrams(text)
    return RawNGrams(weight, dict(letters), dict(pairs), dict(triples), name=name)


@pytest.fixture
def sample_corpus():
    return NGramCorpus.from_raw([raw_from_text(SAMPLE_TEXT)])


@pytest.fixture
def two_key_geometry():
    """One row, two keys with costs 5 and 9, a single layer without cost."""
    return Geometry.from_tables([[5, 9]], [0])


@pytest.fixture
def two_key_blueprint():
    return Blueprint.from_nested([[["e"], ["t"]]])


@pytest.fixture
def write_file(tmp_path):
    def write(name, content):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path
    return write


@pytest.fixture
def make_raw():
    return raw_from_text

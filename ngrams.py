# ngrams.py
"""
Ngram frequency corpus for keyboard layout evolution.

Reads weighted ngram sources (raw text or pregenerated frequency tables),
normalizes each source so that its letter, pair and triple scores sum to
the declared source weight, and merges all sources into one read-only
corpus.

Ngram config format (one source per line, '#' starts a comment):

    <weight> text <path to raw text>
    <weight> pregenerated <letters file>;<pairs file>;<triples file>

Pregenerated frequency files hold one '<count> <ngram>' entry per line.

Note: Ingestion of sources is independent per config line and can run
in a process pool. The merge always folds ngrams in sorted-key order and
sources in config order, so results are bit-identical across runs.
"""

import logging
import math
import os
from collections import Counter
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from errors import ConfigError, EmptyCorpusError, ParseError

logger = logging.getLogger(__name__)

SHIFT_MARKER = "⇧"
BYTE_ORDER_MARK = "\ufeff"
SUPPORTED_KINDS = ("text", "pregenerated")
CATEGORIES = ("letters", "pairs", "triples")
NGRAM_LENGTHS = {"letters": 1, "pairs": 2, "triples": 3}

#-----------------------------------------------------------------------------
# Data structures
#-----------------------------------------------------------------------------
@dataclass(frozen=True)
class NGramSource:
    """One line of an ngram config file."""
    weight: float
    kind: str
    locator: str
    line_number: int = 0

    @property
    def is_supported(self) -> bool:
        return self.kind in SUPPORTED_KINDS


@dataclass
class RawNGrams:
    """Unnormalized counts of one source."""
    weight: float
    letters: Dict[str, float] = field(default_factory=dict)
    pairs: Dict[str, float] = field(default_factory=dict)
    triples: Dict[str, float] = field(default_factory=dict)
    name: str = "<memory>"

    def total(self) -> float:
        return math.fsum(value for category in CATEGORIES
                         for value in getattr(self, category).values())


@dataclass
class NormalizedNGrams:
    """Weighted scores of one source; all three categories sum to weight."""
    weight: float
    letters: Dict[str, float]
    pairs: Dict[str, float]
    triples: Dict[str, float]
    name: str = "<memory>"

#-----------------------------------------------------------------------------
# Parsing
#-----------------------------------------------------------------------------
def parse_ngram_config(text: str, source: str = "<ngrams config>") -> List[NGramSource]:
    """
    Parse the contents of an ngram config file.

    Args:
        text: Config file contents
        source: Name used in error messages

    Returns:
        List of sources in file order (unsupported kinds included)

    Raises:
        ParseError: If a line has too few fields or an invalid weight
    """
    sources = []
    for line_number, line in enumerate(text.splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        parts = stripped.split(None, 2)
        if len(parts) < 3:
            raise ParseError(source, line_number, line, "expected '<weight> <kind> <locator>'")

        try:
            weight = float(parts[0])
        except ValueError:
            raise ParseError(source, line_number, line, f"invalid weight {parts[0]!r}")
        if not math.isfinite(weight) or weight < 0:
            raise ParseError(source, line_number, line, "weight must be a non-negative number")

        logger.debug("Read config line => weight: %s ---- type: %s ---- path: %s",
                     weight, parts[1], parts[2])
        sources.append(NGramSource(weight, parts[1], parts[2].strip(), line_number))

    return sources


def count_text_ngrams(text: str) -> Tuple[Counter, Counter, Counter]:
    """
    Count letters, pairs and triples in raw text.

    Uppercase letters are folded to SHIFT_MARKER. The marker takes part in
    pairs and triples but is not counted as a letter. Pairs and triples are
    keyed in typing order (previous + current, so 'th' for "th"), the same
    order pregenerated tables use, and only ever cover real characters.
    Every pair and triple penalty is symmetric, so the key order never
    changes a cost.

    Returns:
        (letters, pairs, triples) counters
    """
    letters = Counter()
    pairs = Counter()
    triples = Counter()

    previous = None
    before_previous = None
    for char in text:
        if char.isupper():
            char = SHIFT_MARKER
        else:
            letters[char] += 1

        if previous is not None:
            pairs[previous + char] += 1
            if before_previous is not None:
                triples[before_previous + previous + char] += 1

        before_previous = previous
        previous = char

    return letters, pairs, triples


def parse_pregenerated_file(text: str, name: str = "<pregenerated>",
                            ngram_length: Optional[int] = None) -> Dict[str, float]:
    """
    Parse a pregenerated '<count> <ngram>' frequency table.

    The ngram is everything after the single separator following the count,
    so spaces are kept: '12  ' (or '12 ') is the space letter, '12 e ' is
    the pair 'e '.
    Extra alignment whitespace before an ngram of known length is dropped.
    Repeated ngrams are summed.

    Args:
        text: File contents
        name: File name used in error messages
        ngram_length: Expected ngram length, checked when given

    Returns:
        Mapping from ngram to count

    Raises:
        ParseError: On a wrong field count, bad count or wrong ngram length
    """
    counts: Dict[str, float] = {}
    text = text.replace(BYTE_ORDER_MARK, "")

    for line_number, line in enumerate(text.split("\n"), 1):
        line = line.rstrip("\r")
        if not line.strip():
            continue

        stripped = line.lstrip()
        count_field = stripped.split(None, 1)[0]
        # Everything after the single separator is the ngram, spaces included
        ngram = stripped[len(count_field) + 1:]
        if not ngram and stripped.endswith(" "):
            # '12 ' with the padding collapsed is still the space ngram
            ngram = " "
        if not ngram:
            raise ParseError(name, line_number, line, "expected 2 fields, found 1")

        try:
            count = float(count_field)
        except ValueError:
            raise ParseError(name, line_number, line, f"invalid count {count_field!r}")
        if not math.isfinite(count) or count < 0:
            raise ParseError(name, line_number, line, "count must be a non-negative number")

        if ngram_length is not None:
            padding = len(ngram) - ngram_length
            if padding > 0 and not ngram[:padding].strip():
                ngram = ngram[padding:]
            if len(ngram) != ngram_length:
                raise ParseError(name, line_number, line,
                                 f"expected an ngram of length {ngram_length}, got {ngram!r}")

        counts[ngram] = counts.get(ngram, 0.0) + count

    return counts

#-----------------------------------------------------------------------------
# Ingestion (one source, may run in a worker process)
#-----------------------------------------------------------------------------
def _read_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as e:
        raise ConfigError(f"Unable to read ngram source {path}: {e}")


def _resolve(path: str, base_dir: Optional[str]) -> str:
    if base_dir and not os.path.isabs(path):
        return os.path.join(base_dir, path)
    return path


def ingest_source(source: NGramSource, base_dir: Optional[str] = None) -> RawNGrams:
    """
    Read and count one supported source.

    Args:
        source: Parsed config line
        base_dir: Directory that relative locators are resolved against

    Returns:
        Raw counts of the source
    """
    if source.kind == "text":
        path = _resolve(source.locator, base_dir)
        letters, pairs, triples = count_text_ngrams(_read_text(path))
        return RawNGrams(source.weight,
                         {k: float(v) for k, v in letters.items()},
                         {k: float(v) for k, v in pairs.items()},
                         {k: float(v) for k, v in triples.items()},
                         name=path)

    if source.kind == "pregenerated":
        paths = [_resolve(p.strip(), base_dir) for p in source.locator.split(";")]
        if len(paths) != 3:
            raise ConfigError(
                f"Pregenerated source on line {source.line_number} needs three ';'-separated "
                f"paths (letters;pairs;triples), got {len(paths)}")
        tables = [parse_pregenerated_file(_read_text(path), path, NGRAM_LENGTHS[category])
                  for path, category in zip(paths, CATEGORIES)]
        return RawNGrams(source.weight, *tables, name=source.locator)

    raise ValueError(f"Unsupported data type {source.kind}")


def _ingest_with_base(args: Tuple[NGramSource, Optional[str]]) -> RawNGrams:
    source, base_dir = args
    return ingest_source(source, base_dir)

#-----------------------------------------------------------------------------
# Normalization and merge
#-----------------------------------------------------------------------------
def normalize_ngrams(raw: RawNGrams) -> NormalizedNGrams:
    """
    Scale one source so that all its scores together sum to its weight.

    Raises:
        EmptyCorpusError: If the source has no counts at all
    """
    total = raw.total()
    if total <= 0:
        raise EmptyCorpusError(f"Ngram source {raw.name} has a total frequency of zero")

    def scale(table: Dict[str, float]) -> Dict[str, float]:
        return {ngram: count / total * raw.weight for ngram, count in sorted(table.items())}

    return NormalizedNGrams(raw.weight, scale(raw.letters), scale(raw.pairs),
                            scale(raw.triples), name=raw.name)


def merge_normalized(normalized: Sequence[NormalizedNGrams]) -> Tuple[Dict[str, float], ...]:
    """
    Sum weighted scores of all sources per ngram.

    Sources are folded in the given order and ngrams in sorted-key order.

    Returns:
        (letters, pairs, triples) sorted by ngram
    """
    merged = []
    for category in CATEGORIES:
        totals: Dict[str, float] = {}
        for source in normalized:
            table = getattr(source, category)
            for ngram in sorted(table):
                totals[ngram] = totals.get(ngram, 0.0) + table[ngram]
        merged.append(dict(sorted(totals.items())))
    return tuple(merged)

#-----------------------------------------------------------------------------
# Corpus
#-----------------------------------------------------------------------------
class NGramCorpus:
    """
    Merged, normalized ngram frequencies.

    The three tables are read-only mappings sorted by ngram. A corpus is
    never modified after construction and may be shared by any number of
    cost evaluations.
    """

    def __init__(self, letters: Mapping[str, float], pairs: Mapping[str, float],
                 triples: Mapping[str, float]):
        tables = {}
        for category, table in zip(CATEGORIES, (letters, pairs, triples)):
            length = NGRAM_LENGTHS[category]
            for ngram, score in table.items():
                if len(ngram) != length:
                    raise ValueError(f"{category} entry {ngram!r} is not of length {length}")
                if not score >= 0:
                    raise ValueError(f"{category} entry {ngram!r} has invalid score {score}")
            tables[category] = MappingProxyType(dict(sorted(table.items())))

        self._letters = tables["letters"]
        self._pairs = tables["pairs"]
        self._triples = tables["triples"]

    @property
    def letters(self) -> Mapping[str, float]:
        return self._letters

    @property
    def pairs(self) -> Mapping[str, float]:
        return self._pairs

    @property
    def triples(self) -> Mapping[str, float]:
        return self._triples

    def total(self) -> float:
        """Sum of all scores (equals the sum of source weights)."""
        return math.fsum(value for category in CATEGORIES
                         for value in getattr(self, category).values())

    def characters(self) -> List[str]:
        """All characters that occur in any ngram, sorted."""
        chars = set()
        for category in CATEGORIES:
            for ngram in getattr(self, category):
                chars.update(ngram)
        return sorted(chars)

    def limited(self, limit: int) -> "NGramCorpus":
        """
        Keep only the `limit` highest-scoring entries of each table.

        Ties are broken by ngram. A limit of 0 or less returns self.
        """
        if limit <= 0:
            return self

        def top(table: Mapping[str, float]) -> Dict[str, float]:
            ranked = sorted(table.items(), key=lambda item: (-item[1], item[0]))
            return dict(ranked[:limit])

        return NGramCorpus(top(self._letters), top(self._pairs), top(self._triples))

    def __repr__(self) -> str:
        return (f"NGramCorpus(letters={len(self._letters)}, pairs={len(self._pairs)}, "
                f"triples={len(self._triples)})")

    def __reduce__(self):
        # Mapping proxies do not pickle; rebuild from plain dicts in worker processes
        return (self.__class__, (dict(self._letters), dict(self._pairs), dict(self._triples)))

    #-------------------------------------------------------------------------
    # Construction
    #-------------------------------------------------------------------------
    @classmethod
    def from_raw(cls, raw_sources: Iterable[RawNGrams]) -> "NGramCorpus":
        """Normalize and merge already-counted sources."""
        normalized = [normalize_ngrams(raw) for raw in raw_sources]
        if not normalized:
            raise EmptyCorpusError("No usable ngram sources")
        return cls(*merge_normalized(normalized))

    @classmethod
    def from_tables(cls, letters: Mapping[str, float], pairs: Optional[Mapping[str, float]] = None,
                    triples: Optional[Mapping[str, float]] = None,
                    weight: float = 1.0) -> "NGramCorpus":
        """Normalize in-memory count tables as one source of the given weight."""
        raw = RawNGrams(weight, dict(letters), dict(pairs or {}), dict(triples or {}))
        return cls.from_raw([raw])

    @classmethod
    def build(cls, sources: Sequence[NGramSource], processes: Optional[int] = None,
              base_dir: Optional[str] = None) -> "NGramCorpus":
        """
        Ingest, normalize and merge all supported sources.

        Args:
            sources: Parsed ngram config lines
            processes: Worker processes for ingestion (1 = serial, None = auto)
            base_dir: Directory that relative locators are resolved against

        Returns:
            Merged corpus
        """
        supported = []
        for source in sources:
            if source.is_supported:
                supported.append(source)
            else:
                logger.warning("Unsupported data type %s (line %d), skipping source %s",
                               source.kind, source.line_number, source.locator)

        jobs = [(source, base_dir) for source in supported]
        if processes == 1 or len(jobs) <= 1:
            raw_sources = [_ingest_with_base(job) for job in jobs]
        else:
            # map() keeps config order, so the merge stays deterministic
            with ProcessPoolExecutor(max_workers=processes) as executor:
                raw_sources = list(executor.map(_ingest_with_base, jobs))

        for raw in raw_sources:
            logger.debug("Ingested %s: %d letters, %d pairs, %d triples (weight %s)",
                         raw.name, len(raw.letters), len(raw.pairs), len(raw.triples), raw.weight)

        return cls.from_raw(raw_sources)

    @classmethod
    def from_config(cls, path: str, processes: Optional[int] = None) -> "NGramCorpus":
        """
        Build a corpus from an ngram config file.

        Relative source paths are resolved against the config file's directory.

        Raises:
            ConfigError: If the config or a source file cannot be read
        """
        logger.debug("Trying to open ngrams config file %s", path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise ConfigError(f"Unable to open given ngrams config file {path}: {e}")

        sources = parse_ngram_config(text, path)
        return cls.build(sources, processes, base_dir=os.path.dirname(os.path.abspath(path)))

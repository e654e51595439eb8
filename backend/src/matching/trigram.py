"""pg_trgm-compatible trigram similarity.

Mirrors PostgreSQL's similarity(): each word is lowercased and padded with
two leading spaces and one trailing space; similarity is the Jaccard ratio
of the two trigram sets.

Example:
    trigrams("cat") == {"  c", " ca", "cat", "at "}
"""

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

_WORD = re.compile(r"[a-z0-9]+")


def trigrams(text: Optional[str]) -> Set[str]:
    if not text:
        return set()

    result = set()
    for word in _WORD.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            result.add(padded[i:i + 3])
    return result


def set_similarity(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    shared = len(a & b)
    return shared / (len(a) + len(b) - shared)


def trigram_similarity(a: Optional[str], b: Optional[str]) -> float:
    return set_similarity(trigrams(a), trigrams(b))


class TrigramIndex:
    """Inverted trigram index over keyed strings.

    Only entries sharing at least one trigram with the query are scored.
    """

    def __init__(self, entries: Iterable[Tuple[object, str]] = ()):
        self._grams: Dict[object, Set[str]] = {}
        self._postings: Dict[str, List[object]] = defaultdict(list)
        for key, text in entries:
            self.add(key, text)

    def add(self, key, text: str) -> None:
        grams = trigrams(text)
        if not grams:
            return
        self._grams[key] = grams
        for gram in grams:
            self._postings[gram].append(key)

    def __len__(self) -> int:
        return len(self._grams)

    def search(self, text: str, threshold: float = 0.0) -> List[Tuple[object, float]]:
        """Keys with similarity >= threshold, best first."""
        query = trigrams(text)
        if not query:
            return []

        shared: Dict[object, int] = defaultdict(int)
        for gram in query:
            for key in self._postings.get(gram, ()):
                shared[key] += 1

        hits = []
        for key, count in shared.items():
            similarity = count / (len(query) + len(self._grams[key]) - count)
            if similarity >= threshold:
                hits.append((key, similarity))

        hits.sort(key=lambda hit: (-hit[1], str(hit[0])))
        return hits

"""
Dictionaries
============
Two small string indexes used by the encoders:

    - FeaturesDictionary:  feature string → dense id (sparse-binary input)
    - FrequencyDictionary: key → number of occurrences in the training set
                           (frequency-scaled embeddings dropout)
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional


class FeaturesDictionary:
    """Insertion-ordered mapping of feature strings to ids ``0..size-1``."""

    def __init__(self, features: Iterable[str] = ()):
        self._ids: dict[str, int] = {}
        for feature in features:
            self.add(feature)

    def add(self, feature: str) -> int:
        if feature not in self._ids:
            self._ids[feature] = len(self._ids)
        return self._ids[feature]

    def get_id(self, feature: str) -> Optional[int]:
        return self._ids.get(feature)

    def features(self) -> list[str]:
        return list(self._ids)

    @property
    def size(self) -> int:
        return len(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, feature: object) -> bool:
        return feature in self._ids


class FrequencyDictionary:
    """Occurrence counts of embedding keys."""

    def __init__(self, counts: Optional[dict[str, int]] = None):
        self._counts: Counter = Counter(counts or {})

    @classmethod
    def from_keys(cls, keys: Iterable[str]) -> FrequencyDictionary:
        return cls(dict(Counter(keys)))

    def count(self, key: Optional[str]) -> int:
        """Occurrences of ``key``; 0 for unknown or None keys."""
        if key is None:
            return 0
        return self._counts.get(key, 0)

    def __getitem__(self, key: str) -> int:
        return self.count(key)

    def __len__(self) -> int:
        return len(self._counts)

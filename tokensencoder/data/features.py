"""
Key and Feature Extractors
==========================
Collaborators that read linguistic information off a sentence.

Embedding key extractors map a token to the key of its embedding:

    - WordKeyExtractor:      the token form as is
    - NormWordKeyExtractor:  lowercased form with digits replaced by "0"

Features extractors map every token to a set of string features:

    - MorphologyFeaturesExtractor: "i:<index> p:<pos> ..." strings built
      from the morphological analyses of MorphoTokens
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Protocol

from tokensencoder.errors import ConfigurationError

UNKNOWN_FEATURE = "i:0 p:unknown"

_DIGITS = re.compile(r"\d")


class EmbeddingKeyExtractor(Protocol):
    def __call__(self, sentence: Any, index: int) -> Optional[str]:
        ...


class WordKeyExtractor:
    def __call__(self, sentence: Any, index: int) -> Optional[str]:
        return sentence.tokens[index].form

    def __repr__(self) -> str:
        return "WordKeyExtractor()"


class NormWordKeyExtractor:
    def __call__(self, sentence: Any, index: int) -> Optional[str]:
        return _DIGITS.sub("0", sentence.tokens[index].form.lower())

    def __repr__(self) -> str:
        return "NormWordKeyExtractor()"


KEY_EXTRACTORS = {
    "word": WordKeyExtractor,
    "norm_word": NormWordKeyExtractor,
}


def get_key_extractor(name: str) -> EmbeddingKeyExtractor:
    if name not in KEY_EXTRACTORS:
        raise ConfigurationError(
            f"Unknown key extractor '{name}'. Available: {sorted(KEY_EXTRACTORS)}"
        )
    return KEY_EXTRACTORS[name]()


class FeaturesExtractor(Protocol):
    def __call__(self, sentence: Any) -> list[set[str]]:
        ...


class MorphologyFeaturesExtractor:
    """
    One feature set per token from its morphological analyses.

    Every single morphology at position ``i`` of an analysis yields its
    part of speech ``"i:<i> p:<pos>"`` and one ``"i:<i> p:<pos> <k>:<v>"``
    feature per further attribute. Tokens without analyses get the
    unknown feature only.
    """

    def __call__(self, sentence: Any) -> list[set[str]]:
        return [self._token_features(token) for token in sentence.tokens]

    def _token_features(self, token: Any) -> set[str]:
        features: set[str] = set()
        for analysis in getattr(token, "morphologies", ()):
            for i, morphology in enumerate(analysis):
                features.update(_single_features(i, morphology))

        if not features:
            features.add(UNKNOWN_FEATURE)
        return features


def _single_features(index: int, morphology: Mapping[str, str]) -> list[str]:
    pos = morphology.get("pos", "unknown")
    base = f"i:{index} p:{pos}"
    return [base] + [
        f"{base} {key}:{value}"
        for key, value in sorted(morphology.items())
        if key != "pos"
    ]

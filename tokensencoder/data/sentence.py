"""
Tokens and Sentences
====================
Minimal token and sentence types consumed by the encoders. Any object
with a ``tokens`` sequence works as a sentence and any object with a
``form`` works as a token; these dataclasses are the default carriers.

Morphologies:
    A MorphoToken carries its possible morphological analyses. Each
    analysis is a list of single morphologies (more than one for
    contractions such as "del" = "di" + "il"), and each single morphology
    is a mapping of attributes, e.g. ``{"pos": "NOUN", "gender": "f"}``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence


class Token(Protocol):
    form: str


@dataclass
class FormToken:
    form: str


@dataclass
class MorphoToken:
    form: str
    morphologies: list[list[Mapping[str, str]]] = field(default_factory=list)


@dataclass
class Sentence:
    tokens: Sequence[Token]

    def __len__(self) -> int:
        return len(self.tokens)

    @classmethod
    def from_forms(cls, forms: Sequence[str]) -> Sentence:
        """Build a sentence of FormTokens, e.g. ``Sentence.from_forms("a b".split())``."""
        return cls(tokens=[FormToken(form) for form in forms])

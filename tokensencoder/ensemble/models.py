"""
Composite Model Kinds
=====================
The four composite kinds known to the factory. They only differ in how
their components and merge are described; encoding, backward and
optimization are shared (see composite.py).

    ConcatTokensEncoderModel    : concatenation of trainable branches
    AffineTokensEncoderModel    : affine merge of trainable branches
    FFTokensEncoderModel        : concatenation + feed-forward layer
    EnsembleTokensEncoderModel  : any merge, per-branch trainable flag

Usage:
    >>> model = EnsembleTokensEncoderModel(
    ...     components=[
    ...         EnsembleComponent(words_model, trainable=True),
    ...         EnsembleComponent(pretrained_model, trainable=False),
    ...     ],
    ...     merge=AffineMerge(output_size=100, activation="tanh"),
    ... )
"""

from __future__ import annotations

from typing import Optional, Sequence

from tokensencoder.encoders.base import ModelKind, TokensEncoderModel
from tokensencoder.ensemble.composite import CompositeModel, EnsembleComponent
from tokensencoder.ensemble.merge import AffineMerge, ConcatFeedforwardMerge, ConcatMerge, Merge


def _all_trainable(models: Sequence[TokensEncoderModel]) -> list[EnsembleComponent]:
    return [EnsembleComponent(m, trainable=True) for m in models]


class ConcatTokensEncoderModel(CompositeModel):
    kind = ModelKind.CONCAT

    def __init__(self, models: Sequence[TokensEncoderModel], dropout: float = 0.0):
        super().__init__(_all_trainable(models), ConcatMerge(dropout=dropout))


class AffineTokensEncoderModel(CompositeModel):
    kind = ModelKind.AFFINE

    def __init__(
        self,
        models: Sequence[TokensEncoderModel],
        encoding_size: int,
        activation: Optional[str] = None,
        dropout: float = 0.0,
    ):
        super().__init__(
            _all_trainable(models),
            AffineMerge(output_size=encoding_size, activation=activation, dropout=dropout),
        )


class FFTokensEncoderModel(CompositeModel):
    kind = ModelKind.FEEDFORWARD

    def __init__(
        self,
        models: Sequence[TokensEncoderModel],
        encoding_size: int,
        activation: Optional[str] = "tanh",
        dropout: float = 0.0,
    ):
        super().__init__(
            _all_trainable(models),
            ConcatFeedforwardMerge(output_size=encoding_size, activation=activation, dropout=dropout),
        )


class EnsembleTokensEncoderModel(CompositeModel):
    kind = ModelKind.ENSEMBLE

    def __init__(self, components: Sequence[EnsembleComponent], merge: Merge):
        super().__init__(components, merge)

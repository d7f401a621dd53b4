"""
Encoders Factory
================
Dispatches a model to the encoder and optimizer classes of its kind.

The registry covers the closed ModelKind enumeration and is checked for
totality when this module is imported, so adding a kind without
registering it fails immediately rather than on first use.

Usage:
    >>> encoder = build_encoder(model, use_dropout=True, id=3)
    >>> optimizer = build_optimizer(model, UpdateMethod(name="sgd"))
"""

from __future__ import annotations

import logging
from typing import NamedTuple

from tokensencoder.encoders.base import (
    LeafOptimizer,
    ModelKind,
    TokensEncoder,
    TokensEncoderModel,
    TokensEncoderOptimizer,
)
from tokensencoder.encoders.chars import (
    CharsAttentionEncoderModel,
    CharsBiRNNEncoderModel,
    CharsEncoder,
)
from tokensencoder.encoders.embeddings import EmbeddingsEncoder, EmbeddingsEncoderModel
from tokensencoder.encoders.morpho import MorphoEncoder, MorphoEncoderModel
from tokensencoder.encoders.reduction import (
    ReductionEncoder,
    ReductionEncoderModel,
    ReductionEncoderOptimizer,
)
from tokensencoder.encoders.transformer import TransformerEncoder, TransformerEncoderModel
from tokensencoder.encoders.wrapper import (
    TokensEncoderWrapper,
    TokensEncoderWrapperModel,
    TokensEncoderWrapperOptimizer,
)
from tokensencoder.ensemble.composite import CompositeEncoder, CompositeOptimizer
from tokensencoder.ensemble.models import (
    AffineTokensEncoderModel,
    ConcatTokensEncoderModel,
    EnsembleTokensEncoderModel,
    FFTokensEncoderModel,
)
from tokensencoder.errors import ConfigurationError
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    model: type
    encoder: type
    optimizer: type


REGISTRY: dict[ModelKind, _Entry] = {
    ModelKind.EMBEDDINGS: _Entry(EmbeddingsEncoderModel, EmbeddingsEncoder, LeafOptimizer),
    ModelKind.CHARS_BIRNN: _Entry(CharsBiRNNEncoderModel, CharsEncoder, LeafOptimizer),
    ModelKind.CHARS_ATTENTION: _Entry(CharsAttentionEncoderModel, CharsEncoder, LeafOptimizer),
    ModelKind.TRANSFORMER: _Entry(TransformerEncoderModel, TransformerEncoder, LeafOptimizer),
    ModelKind.MORPHO: _Entry(MorphoEncoderModel, MorphoEncoder, LeafOptimizer),
    ModelKind.REDUCTION: _Entry(ReductionEncoderModel, ReductionEncoder, ReductionEncoderOptimizer),
    ModelKind.WRAPPER: _Entry(
        TokensEncoderWrapperModel, TokensEncoderWrapper, TokensEncoderWrapperOptimizer
    ),
    ModelKind.CONCAT: _Entry(ConcatTokensEncoderModel, CompositeEncoder, CompositeOptimizer),
    ModelKind.AFFINE: _Entry(AffineTokensEncoderModel, CompositeEncoder, CompositeOptimizer),
    ModelKind.FEEDFORWARD: _Entry(FFTokensEncoderModel, CompositeEncoder, CompositeOptimizer),
    ModelKind.ENSEMBLE: _Entry(EnsembleTokensEncoderModel, CompositeEncoder, CompositeOptimizer),
}

_missing = [kind.value for kind in ModelKind if kind not in REGISTRY]
if _missing:
    raise ConfigurationError(f"Model kinds without encoder/optimizer: {_missing}")


def _lookup(model: TokensEncoderModel) -> _Entry:
    kind = getattr(model, "kind", None)
    entry = REGISTRY.get(kind) if isinstance(kind, ModelKind) else None
    if entry is None:
        raise ConfigurationError(
            f"Unsupported tokens encoder model {type(model).__name__} (kind={kind!r})"
        )
    if not isinstance(model, entry.model):
        raise ConfigurationError(
            f"Model {type(model).__name__} declares kind '{kind.value}' "
            f"but is not a {entry.model.__name__}"
        )
    return entry


def build_encoder(
    model: TokensEncoderModel,
    use_dropout: bool = False,
    id: int = 0,
) -> TokensEncoder:
    """Build the encoder of ``model``; raise ConfigurationError on unknown kinds."""
    return _lookup(model).encoder(model, use_dropout=use_dropout, id=id)


def build_optimizer(
    model: TokensEncoderModel,
    update_method: UpdateMethod,
) -> TokensEncoderOptimizer:
    """Build the optimizer of ``model``; raise ConfigurationError on unknown kinds."""
    optimizer = _lookup(model).optimizer(model, update_method)
    logger.debug(
        f"Built {type(optimizer).__name__} for {model.kind.value} "
        f"({model.n_params} params, {update_method.name})"
    )
    return optimizer

"""
Model Builder
=============
Turns an EncoderConfig tree into the matching tree of models.

Usage:
    >>> config = TokensEncoderConfig.from_yaml("configs/default.yaml")
    >>> model = build_model(config.encoder)
    >>> model.encoding_size
"""

from __future__ import annotations

import logging

from tokensencoder.config import EncoderConfig
from tokensencoder.core.embeddings import EmbeddingsMap
from tokensencoder.data.dictionary import FeaturesDictionary, FrequencyDictionary
from tokensencoder.data.features import UNKNOWN_FEATURE, get_key_extractor
from tokensencoder.encoders.base import ModelKind, TokensEncoderModel
from tokensencoder.encoders.chars import CharsAttentionEncoderModel, CharsBiRNNEncoderModel
from tokensencoder.encoders.embeddings import EmbeddingsEncoderModel
from tokensencoder.encoders.morpho import MorphoEncoderModel
from tokensencoder.encoders.reduction import ReductionEncoderModel
from tokensencoder.encoders.transformer import TransformerBackbone, TransformerEncoderModel
from tokensencoder.encoders.wrapper import TokensEncoderWrapperModel, get_converter
from tokensencoder.ensemble.composite import EnsembleComponent
from tokensencoder.ensemble.merge import build_merge
from tokensencoder.ensemble.models import (
    AffineTokensEncoderModel,
    ConcatTokensEncoderModel,
    EnsembleTokensEncoderModel,
    FFTokensEncoderModel,
)

logger = logging.getLogger(__name__)


def build_model(config: EncoderConfig, validate: bool = True) -> TokensEncoderModel:
    """
    Build the model described by ``config``.

    Parameters
    ----------
    config : EncoderConfig
        Root of the encoder tree.

    validate : bool
        Validate the whole tree first (children are not re-validated).

    Returns
    -------
    TokensEncoderModel
        The root model; sub-models are reachable through it.
    """
    if validate:
        config.validate()

    kind = ModelKind(config.kind)

    if kind == ModelKind.EMBEDDINGS:
        return EmbeddingsEncoderModel(
            embeddings=EmbeddingsMap(config.encoding_size, keys=config.vocabulary),
            key_extractors=[get_key_extractor(name) for name in config.key_extractors],
            dropout=config.dropout,
            frequency_dictionary=(
                FrequencyDictionary(config.frequencies) if config.frequencies else None
            ),
        )

    if kind in (ModelKind.CHARS_BIRNN, ModelKind.CHARS_ATTENTION):
        cls = CharsBiRNNEncoderModel if kind == ModelKind.CHARS_BIRNN else CharsAttentionEncoderModel
        return cls(
            alphabet=config.alphabet,
            char_embedding_size=config.char_embedding_size,
            hidden_size=config.hidden_size,
            encoding_size=config.encoding_size,
            cell=config.cell,
            attention_size=config.attention_size,
            dropout=config.dropout,
        )

    if kind == ModelKind.TRANSFORMER:
        backbone = TransformerBackbone(
            vocabulary=config.vocabulary,
            d_model=config.encoding_size,
            n_heads=config.n_heads,
            n_layers=config.n_layers,
            ff_size=config.ff_size,
            max_length=config.max_length,
        )
        return TransformerEncoderModel(
            backbone,
            fine_tuning=config.fine_tuning,
            propagate_to_input=config.propagate_to_input,
        )

    if kind == ModelKind.MORPHO:
        dictionary = FeaturesDictionary([UNKNOWN_FEATURE, *config.features])
        return MorphoEncoderModel(
            dictionary,
            encoding_size=config.encoding_size,
            activation=config.activation,
        )

    if kind == ModelKind.REDUCTION:
        return ReductionEncoderModel(
            build_model(config.input, validate=False),
            encoding_size=config.encoding_size,
            activation=config.activation,
            optimize_input=config.optimize_input,
        )

    if kind == ModelKind.WRAPPER:
        return TokensEncoderWrapperModel(
            build_model(config.input, validate=False),
            converter=get_converter(config.converter),
        )

    models = [build_model(c, validate=False) for c in config.components]

    if kind == ModelKind.CONCAT:
        return ConcatTokensEncoderModel(models, dropout=config.dropout)
    if kind == ModelKind.AFFINE:
        return AffineTokensEncoderModel(
            models, config.encoding_size, activation=config.activation, dropout=config.dropout
        )
    if kind == ModelKind.FEEDFORWARD:
        return FFTokensEncoderModel(
            models, config.encoding_size, activation=config.activation, dropout=config.dropout
        )

    components = [
        EnsembleComponent(model, trainable=c.trainable)
        for model, c in zip(models, config.components)
    ]
    merge = build_merge(
        config.merge,
        output_size=config.encoding_size,
        activation=config.activation,
        dropout=config.dropout,
    )
    return EnsembleTokensEncoderModel(components, merge)

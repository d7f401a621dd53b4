"""
Morphological Encoder
=====================
Encodes each token from the set of its morphological features:

    sentence → features extractor → one feature set per token
             → FeaturesDictionary ids → sparse-binary vector
             → FeedforwardLayer → token vector

Features missing from the dictionary are ignored. The encoder never
propagates to input (the input is symbolic).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import torch

from tokensencoder.core.layers import FeedforwardLayer, LinearParams, get_activation
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.data.dictionary import FeaturesDictionary
from tokensencoder.data.features import FeaturesExtractor, MorphologyFeaturesExtractor
from tokensencoder.encoders.base import ModelKind, TokensEncoder, TokensEncoderModel

logger = logging.getLogger(__name__)


class MorphoEncoderModel(TokensEncoderModel):
    """
    Parameters
    ----------
    features_dictionary : FeaturesDictionary
        All the features known to the model.

    encoding_size : int
        Width of the token vectors.

    activation : str, optional
        Activation of the dense layer.

    features_extractor : FeaturesExtractor, optional
        Defaults to MorphologyFeaturesExtractor.
    """

    kind = ModelKind.MORPHO

    def __init__(
        self,
        features_dictionary: FeaturesDictionary,
        encoding_size: int,
        activation: Optional[str] = "tanh",
        features_extractor: Optional[FeaturesExtractor] = None,
    ):
        super().__init__(encoding_size=encoding_size)
        get_activation(activation)

        self.features_dictionary = features_dictionary
        self.activation = activation
        self.features_extractor = features_extractor or MorphologyFeaturesExtractor()
        self.dense = LinearParams(len(features_dictionary), encoding_size)

        logger.info(
            f"MorphoEncoderModel: {len(features_dictionary)} features → {encoding_size}"
        )


class MorphoEncoder(TokensEncoder):

    def __init__(self, model: MorphoEncoderModel, use_dropout: bool = False, id: int = 0):
        super().__init__(model, use_dropout=use_dropout, id=id)
        self._layer = FeedforwardLayer(
            model.dense,
            activation=model.activation,
            sparse=True,
            id=id,
        )

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        dictionary = self.model.features_dictionary
        active = []
        for features in self.model.features_extractor(sentence):
            ids = (dictionary.get_id(f) for f in sorted(features))
            active.append([i for i in ids if i is not None])
        return self._layer.forward(active)

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self._layer.backward(output_errors)

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        return self._layer.get_params_errors(copy=copy)

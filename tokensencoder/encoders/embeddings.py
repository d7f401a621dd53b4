"""
Embeddings Encoder
==================
Encodes each token with the vector of its key in an EmbeddingsMap.

Key resolution:
    The key extractors are tried in order and the first key present in
    the map wins. When none is found the unknown vector is used.

Dropout (only with ``use_dropout=True``):
    The embedding is replaced by the unknown vector with probability
    ``dropout``. With a frequency dictionary ``dropout`` becomes a
    coefficient α and the probability is α / (occurrences + α), so rare
    words are dropped more often than frequent ones.

Backward:
    Errors of tokens sharing a key are averaged, so a word repeated in a
    sentence does not receive a proportionally larger update.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import torch

from tokensencoder.core.accumulator import ParamsErrorsAccumulator
from tokensencoder.core.embeddings import EmbeddingsMap
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.data.dictionary import FrequencyDictionary
from tokensencoder.data.features import EmbeddingKeyExtractor, WordKeyExtractor
from tokensencoder.encoders.base import ModelKind, TokensEncoder, TokensEncoderModel
from tokensencoder.errors import ConfigurationError

logger = logging.getLogger(__name__)


class EmbeddingsEncoderModel(TokensEncoderModel):
    """
    Parameters
    ----------
    embeddings : EmbeddingsMap
        The embeddings table. Its size is the encoding size.

    key_extractors : sequence of EmbeddingKeyExtractor, optional
        Tried in order; defaults to the token form.

    dropout : float
        Dropout probability, or the dropout coefficient when a
        frequency dictionary is given.

    frequency_dictionary : FrequencyDictionary, optional
        Occurrences of the keys in the training set.
    """

    kind = ModelKind.EMBEDDINGS

    def __init__(
        self,
        embeddings: EmbeddingsMap,
        key_extractors: Optional[Sequence[EmbeddingKeyExtractor]] = None,
        dropout: float = 0.0,
        frequency_dictionary: Optional[FrequencyDictionary] = None,
    ):
        super().__init__(encoding_size=embeddings.size)

        if dropout < 0 or (frequency_dictionary is None and dropout >= 1):
            raise ConfigurationError(
                f"Embeddings dropout must be in [0, 1) (or a non-negative "
                f"coefficient with a frequency dictionary), got {dropout}"
            )

        self.embeddings = embeddings
        self.key_extractors = list(key_extractors or [WordKeyExtractor()])
        self.dropout = dropout
        self.frequency_dictionary = frequency_dictionary

        logger.info(
            f"EmbeddingsEncoderModel: {len(embeddings)} keys × {embeddings.size}, "
            f"dropout={dropout}"
        )


class EmbeddingsEncoder(TokensEncoder):

    def __init__(self, model: EmbeddingsEncoderModel, use_dropout: bool = False, id: int = 0):
        super().__init__(model, use_dropout=use_dropout, id=id)
        self._last_embeddings: list = []
        self._errors = ParamsErrorsAccumulator()

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        self._last_embeddings = []
        for i in range(len(sentence.tokens)):
            key = self._get_key(sentence, i)
            self._last_embeddings.append(
                self.model.embeddings.get(key, dropout=self._get_dropout(key))
            )
        return [e.detach().clone() for e in self._last_embeddings]

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self._errors.reset()
        for embedding, errors in zip(self._last_embeddings, output_errors):
            self._errors.accumulate(embedding, errors)
        self._errors.average_errors()

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        return self._errors.get_params_errors(copy=copy)

    def _get_key(self, sentence: Any, index: int) -> Optional[str]:
        for extractor in self.model.key_extractors:
            key = extractor(sentence, index)
            if key is not None and key in self.model.embeddings:
                return key
        return None

    def _get_dropout(self, key: Optional[str]) -> float:
        if not self.use_dropout:
            return 0.0
        frequencies = self.model.frequency_dictionary
        if frequencies is None:
            return self.model.dropout
        alpha = self.model.dropout
        return alpha / (frequencies.count(key) + alpha) if alpha > 0 else 0.0

"""
Transformer Encoder
===================
Contextual token vectors from a pretrained transformer backbone.

Architecture:
    token forms → input embeddings (EmbeddingsMap, by form)
                → + learned positions
                → nn.TransformerEncoder (n_layers × self-attention + FFN)
    one d_model vector per token

Fine-tuning:
    With ``fine_tuning=False`` the backbone is used as a frozen feature
    extractor and the encoder reports an empty ParamsErrorsList. With
    ``fine_tuning=True`` the errors of the transformer layers are
    reported together with the input embeddings errors (averaged per
    form).

Propagation:
    With ``propagate_to_input=True`` the encoder exposes the errors of
    the input embeddings, one vector per token.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import torch
import torch.nn as nn

from tokensencoder.core.accumulator import ParamsErrorsAccumulator
from tokensencoder.core.embeddings import EmbeddingsMap
from tokensencoder.core.module import AutogradProcessor
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.encoders.base import ModelKind, TokensEncoder, TokensEncoderModel
from tokensencoder.errors import ConfigurationError, ProtocolError

logger = logging.getLogger(__name__)


class TransformerBackbone(nn.Module):
    """
    Parameters
    ----------
    vocabulary : sequence of str
        Forms with a dedicated input embedding.

    d_model : int
        Width of the embeddings and of the output vectors.

    n_heads : int
        Attention heads; must divide d_model.

    n_layers : int
        Number of stacked encoder layers.

    ff_size : int
        Hidden width of the feed-forward sub-layers.

    max_length : int
        Longest sentence the learned positions cover.
    """

    def __init__(
        self,
        vocabulary: Sequence[str],
        d_model: int = 64,
        n_heads: int = 4,
        n_layers: int = 2,
        ff_size: int = 128,
        max_length: int = 128,
    ):
        super().__init__()
        if d_model <= 0 or n_heads <= 0 or d_model % n_heads != 0:
            raise ConfigurationError(
                f"d_model ({d_model}) must be positive and divisible by "
                f"n_heads ({n_heads})"
            )
        if n_layers <= 0 or ff_size <= 0 or max_length <= 0:
            raise ConfigurationError(
                f"n_layers, ff_size and max_length must be positive, got "
                f"{n_layers}, {ff_size}, {max_length}"
            )

        self.d_model = d_model
        self.max_length = max_length
        self.embeddings = EmbeddingsMap(d_model, keys=vocabulary)
        self.positions = nn.Parameter(torch.empty(max_length, d_model).normal_(0.0, 0.02))

        # Dropout is left to the caller: the backbone must be deterministic
        layer = nn.TransformerEncoderLayer(
            d_model=d_model,
            nhead=n_heads,
            dim_feedforward=ff_size,
            dropout=0.0,
            batch_first=True,
        )
        self.encoder = nn.TransformerEncoder(
            layer,
            num_layers=n_layers,
            enable_nested_tensor=False,
        )

    def layers_parameters(self) -> list[nn.Parameter]:
        """Every parameter except the input embeddings."""
        return [
            p for name, p in self.named_parameters()
            if not name.startswith("embeddings.")
        ]

    def encode(self, x: torch.Tensor) -> torch.Tensor:
        """Encode ``[n_tokens, d_model]`` input embeddings."""
        x = x + self.positions[: x.shape[0]]
        return self.encoder(x.unsqueeze(0)).squeeze(0)


class TransformerProcessor(AutogradProcessor):

    def __init__(self, backbone: TransformerBackbone, fine_tuning: bool, id: int = 0):
        super().__init__(
            params=backbone.layers_parameters() if fine_tuning else [],
            propagate_to_input=True,
            id=id,
        )
        self.backbone = backbone

    def _prepare_inputs(self, input) -> list[torch.Tensor]:
        if len(input) == 0:
            return [torch.zeros(0, self.backbone.d_model)]
        return [torch.stack(list(input))]

    def _compute(self, inputs: list[torch.Tensor]) -> torch.Tensor:
        if inputs[0].shape[0] == 0:
            return inputs[0] * 1.0
        return self.backbone.encode(inputs[0])


class TransformerEncoderModel(TokensEncoderModel):
    """
    Parameters
    ----------
    backbone : TransformerBackbone
        The transformer weights.

    fine_tuning : bool
        Whether the backbone receives params errors.

    propagate_to_input : bool
        Whether encoders expose the errors of the input embeddings.
    """

    kind = ModelKind.TRANSFORMER

    def __init__(
        self,
        backbone: TransformerBackbone,
        fine_tuning: bool = False,
        propagate_to_input: bool = False,
    ):
        super().__init__(encoding_size=backbone.d_model)
        self.backbone = backbone
        self.fine_tuning = fine_tuning
        self.propagate_to_input = propagate_to_input

        logger.info(
            f"TransformerEncoderModel: {self.n_params / 1e6:.2f}M params, "
            f"fine_tuning={fine_tuning}"
        )


class TransformerEncoder(TokensEncoder):

    def __init__(self, model: TransformerEncoderModel, use_dropout: bool = False, id: int = 0):
        super().__init__(
            model,
            use_dropout=use_dropout,
            id=id,
            propagate_to_input=model.propagate_to_input,
        )
        self._processor = TransformerProcessor(model.backbone, model.fine_tuning, id=id)
        self._last_embeddings: list[nn.Parameter] = []
        self._errors = ParamsErrorsAccumulator()

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        backbone = self.model.backbone
        n_tokens = len(sentence.tokens)
        if n_tokens > backbone.max_length:
            raise ProtocolError(
                f"{self.name}: sentence of {n_tokens} tokens exceeds the "
                f"backbone max_length ({backbone.max_length})"
            )

        self._last_embeddings = [backbone.embeddings.get(t.form) for t in sentence.tokens]
        return self._processor.forward(self._last_embeddings)

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self._processor.backward(output_errors)
        self._errors.reset()

        if self.model.fine_tuning:
            self._errors.accumulate_all(self._processor.get_params_errors(copy=False))
            embeddings_errors = ParamsErrorsAccumulator()
            for embedding, errors in zip(
                self._last_embeddings, self._processor.get_input_errors(copy=False)
            ):
                embeddings_errors.accumulate(embedding, errors)
            if self._last_embeddings:
                embeddings_errors.average_errors()
                self._errors.accumulate_all(embeddings_errors.get_params_errors(copy=False))

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        return self._errors.get_params_errors(copy=copy)

    def _get_input_errors(self, copy: bool) -> list[torch.Tensor]:
        return self._processor.get_input_errors(copy=copy)

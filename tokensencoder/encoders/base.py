"""
Tokens Encoder Base Classes
===========================
The Model / Encoder / Optimizer triple every encoder kind implements.

    TokensEncoderModel      — nn.Module holding the parameter values and
                              the shape of the encoder (encoding_size,
                              sub-models). Never trained directly.
    TokensEncoder           — one forward/backward cycle over a sentence:
                              one output vector per token.
    TokensEncoderOptimizer  — receives params errors from any number of
                              encoders of the same model, then updates.

Analogy:
    The model is a recipe, the encoder is a cook following it for one
    dish, and the optimizer is the critic who tastes many dishes before
    telling the recipe author what to change.

Usage:
    >>> encoder = model.build_encoder(use_dropout=False)
    >>> vectors = encoder.forward(sentence)        # len(sentence.tokens) vectors
    >>> encoder.backward(errors)
    >>> optimizer = model.build_optimizer(UpdateMethod())
    >>> optimizer.accumulate(encoder.get_params_errors(copy=False))
    >>> optimizer.update()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import torch
import torch.nn as nn

from tokensencoder.core.module import DifferentiableModule
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.errors import ConfigurationError, ProtocolError
from tokensencoder.optim.params_optimizer import ParamsOptimizer
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)


class ModelKind(str, Enum):
    """Closed set of encoder kinds known to the factory."""

    EMBEDDINGS = "embeddings"
    CHARS_BIRNN = "chars_birnn"
    CHARS_ATTENTION = "chars_attention"
    TRANSFORMER = "transformer"
    MORPHO = "morpho"
    REDUCTION = "reduction"
    WRAPPER = "wrapper"
    CONCAT = "concat"
    AFFINE = "affine"
    FEEDFORWARD = "feedforward"
    ENSEMBLE = "ensemble"


class TokensEncoderModel(nn.Module):
    """
    Base class of every tokens encoder model.

    Parameters
    ----------
    encoding_size : int
        Width of the vectors produced for each token. Must be positive.
    """

    kind: ModelKind

    def __init__(self, encoding_size: int):
        super().__init__()
        if encoding_size <= 0:
            raise ConfigurationError(
                f"{type(self).__name__}: encoding_size must be positive, "
                f"got {encoding_size}"
            )
        self.encoding_size = encoding_size

    def build_encoder(self, use_dropout: bool = False, id: int = 0) -> TokensEncoder:
        from tokensencoder.encoders.factory import build_encoder
        return build_encoder(self, use_dropout=use_dropout, id=id)

    def build_optimizer(self, update_method: UpdateMethod) -> TokensEncoderOptimizer:
        from tokensencoder.encoders.factory import build_optimizer
        return build_optimizer(self, update_method)

    @property
    def n_params(self) -> int:
        """Total number of parameters."""
        return sum(p.numel() for p in self.parameters())

    def extra_repr(self) -> str:
        return f"kind={self.kind.value}, encoding_size={self.encoding_size}"


class TokensEncoder(DifferentiableModule):
    """
    Encodes the tokens of a sentence into vectors of ``model.encoding_size``.

    Besides the life-cycle checks of DifferentiableModule, every forward
    is checked to produce exactly one vector of the declared width per
    input token.

    Parameters
    ----------
    model : TokensEncoderModel
        The model this encoder reads its parameters from.

    use_dropout : bool
        Whether dropout is applied (training mode).

    id : int
        Identifier of the encoder, usually its pool slot.

    propagate_to_input : bool
        Whether ``get_input_errors`` is available.
    """

    def __init__(
        self,
        model: TokensEncoderModel,
        use_dropout: bool = False,
        id: int = 0,
        propagate_to_input: bool = False,
    ):
        super().__init__(propagate_to_input=propagate_to_input, id=id)
        self.model = model
        self.use_dropout = use_dropout

    @property
    def name(self) -> str:
        return f"{type(self).__name__}[{self.model.kind.value}](id={self.id})"

    def forward(self, sentence: Any) -> list[torch.Tensor]:
        output = super().forward(sentence)

        n_tokens = len(sentence.tokens)
        if len(output) != n_tokens:
            self._output_shapes = None
            raise ProtocolError(
                f"{self.name}: produced {len(output)} vectors for "
                f"{n_tokens} tokens"
            )
        for i, vector in enumerate(output):
            if tuple(vector.shape) != (self.model.encoding_size,):
                self._output_shapes = None
                raise ProtocolError(
                    f"{self.name}: vector {i} has shape {tuple(vector.shape)}, "
                    f"expected ({self.model.encoding_size},)"
                )
        return output


class TokensEncoderOptimizer(ABC):
    """
    Accumulates the params errors of many encoders of one model and
    applies the update rule.
    """

    def __init__(self, model: TokensEncoderModel, update_method: UpdateMethod):
        self.model = model
        self.update_method = update_method

    @abstractmethod
    def accumulate(self, params_errors: Any, copy: bool = True) -> None:
        ...

    @abstractmethod
    def update(self) -> None:
        ...


class LeafOptimizer(TokensEncoderOptimizer):
    """Optimizer of models whose params errors are a flat ParamsErrorsList."""

    def __init__(self, model: TokensEncoderModel, update_method: UpdateMethod):
        super().__init__(model, update_method)
        self.optimizer = ParamsOptimizer(model.parameters(), update_method)

    def accumulate(self, params_errors: ParamsErrorsList, copy: bool = True) -> None:
        if not isinstance(params_errors, ParamsErrorsList):
            raise ProtocolError(
                f"{type(self).__name__}[{self.model.kind.value}] expects a "
                f"ParamsErrorsList, got {type(params_errors).__name__}"
            )
        self.optimizer.accumulate(params_errors, copy=copy)

    def update(self) -> None:
        self.optimizer.update()

"""
Tokens Encoder Wrapper
======================
Adapts a sentence to the token type another encoder expects before
delegating to it. The conversion must keep the number of tokens.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import torch

from tokensencoder.encoders.base import (
    ModelKind,
    TokensEncoder,
    TokensEncoderModel,
    TokensEncoderOptimizer,
)
from tokensencoder.errors import ConfigurationError
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)


class SentenceConverter(Protocol):
    def __call__(self, sentence: Any) -> Any:
        ...


class MirrorConverter:
    """Returns the sentence unchanged."""

    def __call__(self, sentence: Any) -> Any:
        return sentence

    def __repr__(self) -> str:
        return "MirrorConverter()"


CONVERTERS = {"mirror": MirrorConverter}


def get_converter(name: str) -> SentenceConverter:
    if name not in CONVERTERS:
        raise ConfigurationError(
            f"Unknown sentence converter '{name}'. Available: {sorted(CONVERTERS)}"
        )
    return CONVERTERS[name]()


class TokensEncoderWrapperModel(TokensEncoderModel):

    kind = ModelKind.WRAPPER

    def __init__(self, model: TokensEncoderModel, converter: Optional[SentenceConverter] = None):
        super().__init__(encoding_size=model.encoding_size)
        self.wrapped = model
        self.converter = converter or MirrorConverter()


class TokensEncoderWrapper(TokensEncoder):

    def __init__(self, model: TokensEncoderWrapperModel, use_dropout: bool = False, id: int = 0):
        from tokensencoder.encoders.factory import build_encoder

        inner = build_encoder(model.wrapped, use_dropout=use_dropout, id=id)
        super().__init__(
            model,
            use_dropout=use_dropout,
            id=id,
            propagate_to_input=inner.propagate_to_input,
        )
        self.encoder = inner

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        return self.encoder.forward(self.model.converter(sentence))

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self.encoder.backward(output_errors)

    def _get_params_errors(self, copy: bool) -> Any:
        return self.encoder.get_params_errors(copy=copy)

    def _get_input_errors(self, copy: bool) -> Any:
        return self.encoder.get_input_errors(copy=copy)


class TokensEncoderWrapperOptimizer(TokensEncoderOptimizer):

    def __init__(self, model: TokensEncoderWrapperModel, update_method: UpdateMethod):
        from tokensencoder.encoders.factory import build_optimizer

        super().__init__(model, update_method)
        self.optimizer = build_optimizer(model.wrapped, update_method)

    def accumulate(self, params_errors: Any, copy: bool = True) -> None:
        self.optimizer.accumulate(params_errors, copy=copy)

    def update(self) -> None:
        self.optimizer.update()

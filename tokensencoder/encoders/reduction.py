"""
Reduction Encoder
=================
Reduces (or expands) the vectors of an input encoder with a dense layer:

    sentence → input encoder → FeedforwardLayer → token vectors

With ``optimize_input=False`` the input encoder is used as a frozen
feature extractor: it is never backwarded and its optimizer is not
built, so ReductionParams.input is None.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import torch

from tokensencoder.core.layers import FeedforwardLayer, LinearParams, get_activation
from tokensencoder.core.params import ReductionParams
from tokensencoder.encoders.base import (
    ModelKind,
    TokensEncoder,
    TokensEncoderModel,
    TokensEncoderOptimizer,
)
from tokensencoder.errors import ProtocolError
from tokensencoder.optim.params_optimizer import ParamsOptimizer
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)


class ReductionEncoderModel(TokensEncoderModel):
    """
    Parameters
    ----------
    input_model : TokensEncoderModel
        Model of the input encoder.

    encoding_size : int
        Width of the reduced vectors.

    activation : str, optional
        Activation of the reduction layer.

    optimize_input : bool
        Whether the input encoder is trained together with the reduction.
    """

    kind = ModelKind.REDUCTION

    def __init__(
        self,
        input_model: TokensEncoderModel,
        encoding_size: int,
        activation: Optional[str] = None,
        optimize_input: bool = True,
    ):
        super().__init__(encoding_size=encoding_size)
        get_activation(activation)

        self.input_model = input_model
        self.activation = activation
        self.optimize_input = optimize_input
        self.reduction = LinearParams(input_model.encoding_size, encoding_size)

        logger.info(
            f"ReductionEncoderModel: {input_model.kind.value} "
            f"{input_model.encoding_size} → {encoding_size}, "
            f"optimize_input={optimize_input}"
        )


class ReductionEncoder(TokensEncoder):

    def __init__(self, model: ReductionEncoderModel, use_dropout: bool = False, id: int = 0):
        from tokensencoder.encoders.factory import build_encoder

        super().__init__(model, use_dropout=use_dropout, id=id)
        self.input_encoder = build_encoder(model.input_model, use_dropout=use_dropout, id=id)
        self._layer = FeedforwardLayer(
            model.reduction,
            activation=model.activation,
            propagate_to_input=model.optimize_input,
            id=id,
        )

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        return self._layer.forward(self.input_encoder.forward(sentence))

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self._layer.backward(output_errors)
        if self.model.optimize_input:
            self.input_encoder.backward(self._layer.get_input_errors(copy=False))

    def _get_params_errors(self, copy: bool) -> ReductionParams:
        return ReductionParams(
            input=(
                self.input_encoder.get_params_errors(copy=copy)
                if self.model.optimize_input else None
            ),
            reduction=self._layer.get_params_errors(copy=copy),
        )


class ReductionEncoderOptimizer(TokensEncoderOptimizer):

    def __init__(self, model: ReductionEncoderModel, update_method: UpdateMethod):
        from tokensencoder.encoders.factory import build_optimizer

        super().__init__(model, update_method)
        self.input_optimizer = (
            build_optimizer(model.input_model, update_method)
            if model.optimize_input else None
        )
        self.reduction_optimizer = ParamsOptimizer(model.reduction.parameters(), update_method)

    def accumulate(self, params_errors: ReductionParams, copy: bool = True) -> None:
        if not isinstance(params_errors, ReductionParams):
            raise ProtocolError(
                f"ReductionEncoderOptimizer expects ReductionParams, got "
                f"{type(params_errors).__name__}"
            )
        if (params_errors.input is None) != (self.input_optimizer is None):
            raise ProtocolError(
                f"ReductionEncoderOptimizer: input params errors "
                f"{'missing' if params_errors.input is None else 'unexpected'} "
                f"with optimize_input={self.model.optimize_input}"
            )

        if self.input_optimizer is not None:
            self.input_optimizer.accumulate(params_errors.input, copy=copy)
        self.reduction_optimizer.accumulate(params_errors.reduction, copy=copy)

    def update(self) -> None:
        if self.input_optimizer is not None:
            self.input_optimizer.update()
        self.reduction_optimizer.update()

"""
Leaf Layers
===========
The default numeric building blocks used by the encoders and by the
merge compositions. They hold no knowledge of tokens or sentences: they
map per-token vectors to per-token vectors.

    FeedforwardLayer:  y = f(W·x + b)                 (dense or sparse-binary x)
    AffineLayer:       y = f(W_1·x_1 + ... + W_n·x_n + b)

Parameters live in small nn.Module containers (LinearParams,
AffineParams) owned by the models; the layers themselves are the
short-lived processors that run one forward/backward cycle.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F

from tokensencoder.core.module import AutogradProcessor
from tokensencoder.errors import ConfigurationError

logger = logging.getLogger(__name__)


ACTIVATIONS: dict[str, Optional[Callable[[torch.Tensor], torch.Tensor]]] = {
    "identity": None,
    "tanh": torch.tanh,
    "relu": F.relu,
    "sigmoid": torch.sigmoid,
    "gelu": F.gelu,
    "softsign": F.softsign,
}


def get_activation(name: Optional[str]) -> Optional[Callable[[torch.Tensor], torch.Tensor]]:
    """Resolve an activation name; None and "identity" mean no activation."""
    if name is None:
        return None
    if name not in ACTIVATIONS:
        raise ConfigurationError(
            f"Unknown activation '{name}'. Available: {sorted(ACTIVATIONS)}"
        )
    return ACTIVATIONS[name]


# =============================================================================
# Parameters
# =============================================================================

class LinearParams(nn.Module):
    """
    Weight matrix and bias of a feed-forward layer.

    Parameters
    ----------
    input_size : int
        Width of the input vectors.

    output_size : int
        Width of the output vectors.
    """

    def __init__(self, input_size: int, output_size: int):
        super().__init__()
        if input_size <= 0 or output_size <= 0:
            raise ConfigurationError(
                f"LinearParams sizes must be positive, got "
                f"input_size={input_size}, output_size={output_size}"
            )
        self.input_size = input_size
        self.output_size = output_size
        self.weight = nn.Parameter(torch.empty(output_size, input_size))
        self.bias = nn.Parameter(torch.zeros(output_size))
        nn.init.xavier_uniform_(self.weight)


class AffineParams(nn.Module):
    """One weight matrix per input plus a shared bias."""

    def __init__(self, input_sizes: Sequence[int], output_size: int):
        super().__init__()
        if not input_sizes:
            raise ConfigurationError("AffineParams needs at least one input")
        if output_size <= 0 or any(s <= 0 for s in input_sizes):
            raise ConfigurationError(
                f"AffineParams sizes must be positive, got "
                f"input_sizes={list(input_sizes)}, output_size={output_size}"
            )
        self.input_sizes = list(input_sizes)
        self.output_size = output_size
        self.weights = nn.ParameterList(
            [nn.Parameter(torch.empty(output_size, s)) for s in input_sizes]
        )
        self.bias = nn.Parameter(torch.zeros(output_size))
        for w in self.weights:
            nn.init.xavier_uniform_(w)


# =============================================================================
# Processors
# =============================================================================

class FeedforwardLayer(AutogradProcessor):
    """
    Feed-forward layer over a sequence of per-token inputs.

    Dense input is a list of vectors. Sparse-binary input (``sparse=True``)
    is a list of active-index collections, one per token, expanded to
    multi-hot rows.
    """

    def __init__(
        self,
        params: LinearParams,
        activation: Optional[str] = None,
        sparse: bool = False,
        propagate_to_input: bool = False,
        id: int = 0,
    ):
        super().__init__(
            params=[params.weight, params.bias],
            propagate_to_input=propagate_to_input and not sparse,
            id=id,
        )
        self.linear = params
        self.activation = get_activation(activation)
        self.sparse = sparse

    def _prepare_inputs(self, input) -> list[torch.Tensor]:
        size = self.linear.input_size
        weight = self.linear.weight

        if self.sparse:
            x = torch.zeros(len(input), size, dtype=weight.dtype)
            for row, active in enumerate(input):
                indices = list(active)
                if indices:
                    x[row, indices] = 1.0
            return [x]

        if len(input) == 0:
            return [torch.zeros(0, size, dtype=weight.dtype)]
        return [torch.stack(list(input))]

    def _compute(self, inputs: list[torch.Tensor]) -> torch.Tensor:
        y = F.linear(inputs[0], self.linear.weight, self.linear.bias)
        return self.activation(y) if self.activation is not None else y


class AffineLayer(AutogradProcessor):
    """
    Affine combination of several aligned inputs.

    The input is one sequence of per-token vectors per weight matrix; the
    input errors are returned in the same nesting.
    """

    def __init__(
        self,
        params: AffineParams,
        activation: Optional[str] = None,
        propagate_to_input: bool = False,
        id: int = 0,
    ):
        super().__init__(
            params=list(params.weights) + [params.bias],
            propagate_to_input=propagate_to_input,
            id=id,
        )
        self.affine = params
        self.activation = get_activation(activation)

    def _prepare_inputs(self, input) -> list[torch.Tensor]:
        tensors = []
        for vectors, size in zip(input, self.affine.input_sizes):
            if len(vectors) == 0:
                tensors.append(torch.zeros(0, size, dtype=self.affine.bias.dtype))
            else:
                tensors.append(torch.stack(list(vectors)))
        return tensors

    def _compute(self, inputs: list[torch.Tensor]) -> torch.Tensor:
        y = self.affine.bias
        for x, w in zip(inputs, self.affine.weights):
            y = y + F.linear(x, w)
        return self.activation(y) if self.activation is not None else y

    def _get_input_errors(self, copy: bool) -> list[list[torch.Tensor]]:
        return [list(g.clone() if copy else g) for g in self._input_grads]

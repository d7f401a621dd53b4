"""
Merge Layers
============
How a composite encoder turns the vectors of its branches into one
vector per token, and how it routes the errors back to the branches.

    Merge               width             params   backward
    ─────────────────   ───────────────   ──────   ──────────────────────────
    ConcatMerge         Σ branch widths   none     contiguous slices per branch
    SumMerge            common width      none     same errors to every branch
    AvgMerge            common width      none     errors / n_branches
    ProductMerge        common width      none     errors × other branches
    AffineMerge         output_size       affine   affine input errors
    ConcatFeedforward   output_size       linear   layer → concat split

A merge is a small configuration object; ``build_params()`` creates its
parameters (owned by the composite model) and ``build_processor()`` the
per-encoder processor that runs one cycle.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import torch
import torch.nn as nn

from tokensencoder.core.layers import (
    AffineLayer,
    AffineParams,
    FeedforwardLayer,
    LinearParams,
    get_activation,
)
from tokensencoder.core.module import DifferentiableModule
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.errors import ConfigurationError, ProtocolError

logger = logging.getLogger(__name__)


# =============================================================================
# Merge configurations
# =============================================================================

class Merge(ABC):
    """Base class of the merge configurations."""

    name: str = ""
    dropout: float = 0.0

    def validate(self, sizes: Sequence[int]) -> None:
        if not sizes:
            raise ConfigurationError(f"{self.name} merge needs at least one branch")
        if any(s <= 0 for s in sizes):
            raise ConfigurationError(
                f"{self.name} merge: branch widths must be positive, got {list(sizes)}"
            )
        if not 0.0 <= self.dropout < 1.0:
            raise ConfigurationError(
                f"{self.name} merge: dropout must be in [0, 1), got {self.dropout}"
            )

    @abstractmethod
    def merged_size(self, sizes: Sequence[int]) -> int:
        ...

    def build_params(self, sizes: Sequence[int]) -> Optional[nn.Module]:
        return None

    @abstractmethod
    def build_processor(
        self,
        sizes: Sequence[int],
        params: Optional[nn.Module],
        propagate_to_input: bool,
        id: int = 0,
    ) -> MergeProcessor:
        ...


class _EqualSizesMerge(Merge):

    def validate(self, sizes: Sequence[int]) -> None:
        super().validate(sizes)
        if len(set(sizes)) != 1:
            raise ConfigurationError(
                f"{self.name} merge requires branches of equal width, got {list(sizes)}"
            )

    def merged_size(self, sizes: Sequence[int]) -> int:
        return sizes[0]

    def build_processor(self, sizes, params, propagate_to_input, id=0) -> MergeProcessor:
        return ReduceProcessor(self.name, sizes, propagate_to_input=propagate_to_input, id=id)


@dataclass
class ConcatMerge(Merge):
    dropout: float = 0.0
    name = "concat"

    def merged_size(self, sizes: Sequence[int]) -> int:
        return sum(sizes)

    def build_processor(self, sizes, params, propagate_to_input, id=0) -> MergeProcessor:
        return ConcatProcessor(sizes, propagate_to_input=propagate_to_input, id=id)


@dataclass
class SumMerge(_EqualSizesMerge):
    dropout: float = 0.0
    name = "sum"


@dataclass
class AvgMerge(_EqualSizesMerge):
    dropout: float = 0.0
    name = "avg"


@dataclass
class ProductMerge(_EqualSizesMerge):
    dropout: float = 0.0
    name = "product"


@dataclass
class AffineMerge(Merge):
    output_size: int = 0
    activation: Optional[str] = None
    dropout: float = 0.0
    name = "affine"

    def validate(self, sizes: Sequence[int]) -> None:
        super().validate(sizes)
        _check_output_size(self.name, self.output_size)
        get_activation(self.activation)

    def merged_size(self, sizes: Sequence[int]) -> int:
        return self.output_size

    def build_params(self, sizes: Sequence[int]) -> nn.Module:
        return AffineParams(sizes, self.output_size)

    def build_processor(self, sizes, params, propagate_to_input, id=0) -> MergeProcessor:
        return AffineProcessor(
            sizes, params, self.activation, propagate_to_input=propagate_to_input, id=id
        )


@dataclass
class ConcatFeedforwardMerge(Merge):
    output_size: int = 0
    activation: Optional[str] = "tanh"
    dropout: float = 0.0
    name = "concat_feedforward"

    def validate(self, sizes: Sequence[int]) -> None:
        super().validate(sizes)
        _check_output_size(self.name, self.output_size)
        get_activation(self.activation)

    def merged_size(self, sizes: Sequence[int]) -> int:
        return self.output_size

    def build_params(self, sizes: Sequence[int]) -> nn.Module:
        return LinearParams(sum(sizes), self.output_size)

    def build_processor(self, sizes, params, propagate_to_input, id=0) -> MergeProcessor:
        return ConcatFeedforwardProcessor(
            sizes, params, self.activation, propagate_to_input=propagate_to_input, id=id
        )


MERGES = {
    "concat": ConcatMerge,
    "sum": SumMerge,
    "avg": AvgMerge,
    "product": ProductMerge,
    "affine": AffineMerge,
    "concat_feedforward": ConcatFeedforwardMerge,
}


def build_merge(
    name: str,
    output_size: int = 0,
    activation: Optional[str] = None,
    dropout: float = 0.0,
) -> Merge:
    """Build a merge configuration by name."""
    if name not in MERGES:
        raise ConfigurationError(
            f"Unknown merge '{name}'. Available: {sorted(MERGES)}"
        )
    cls = MERGES[name]
    if cls in (AffineMerge, ConcatFeedforwardMerge):
        return cls(output_size=output_size, activation=activation, dropout=dropout)
    return cls(dropout=dropout)


def _check_output_size(name: str, size: int) -> None:
    if size <= 0:
        raise ConfigurationError(f"{name} merge: output size must be positive, got {size}")


# =============================================================================
# Merge processors
# =============================================================================

class MergeProcessor(DifferentiableModule):
    """
    Merges aligned branch outputs token by token.

    The input is one list of per-token vectors per branch; the input
    errors are returned with the same nesting. Params errors are None
    for merges without parameters.
    """

    def __init__(self, sizes: Sequence[int], propagate_to_input: bool = True, id: int = 0):
        super().__init__(propagate_to_input=propagate_to_input, id=id)
        self.sizes = list(sizes)

    def _check_branches(self, branches: Sequence[Sequence[torch.Tensor]]) -> int:
        if len(branches) != len(self.sizes):
            raise ProtocolError(
                f"{self.name}: expected {len(self.sizes)} branches, got {len(branches)}"
            )
        n_tokens = len(branches[0])
        for b, (vectors, size) in enumerate(zip(branches, self.sizes)):
            if len(vectors) != n_tokens:
                raise ProtocolError(
                    f"{self.name}: branch {b} has {len(vectors)} vectors, "
                    f"branch 0 has {n_tokens}"
                )
            for vector in vectors:
                if tuple(vector.shape) != (size,):
                    raise ProtocolError(
                        f"{self.name}: branch {b} vector has shape "
                        f"{tuple(vector.shape)}, expected ({size},)"
                    )
        return n_tokens

    def _get_params_errors(self, copy: bool) -> Optional[ParamsErrorsList]:
        return None


class ConcatProcessor(MergeProcessor):

    def _forward(self, branches) -> list[torch.Tensor]:
        n_tokens = self._check_branches(branches)
        return [torch.cat([b[i] for b in branches]) for i in range(n_tokens)]

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        per_token = [torch.split(e, self.sizes) for e in output_errors]
        self._input_errors = [
            [slices[b] for slices in per_token] for b in range(len(self.sizes))
        ]

    def _get_input_errors(self, copy: bool) -> list[list[torch.Tensor]]:
        if copy:
            return [[e.clone() for e in branch] for branch in self._input_errors]
        return self._input_errors


class ReduceProcessor(MergeProcessor):
    """Sum, average or product of equally sized branches."""

    def __init__(self, mode: str, sizes: Sequence[int], propagate_to_input: bool = True, id: int = 0):
        super().__init__(sizes, propagate_to_input=propagate_to_input, id=id)
        self.mode = mode
        self._stacked: list[torch.Tensor] = []

    def _forward(self, branches) -> list[torch.Tensor]:
        n_tokens = self._check_branches(branches)
        self._stacked = [torch.stack([b[i] for b in branches]) for i in range(n_tokens)]

        if self.mode == "sum":
            return [s.sum(dim=0) for s in self._stacked]
        if self.mode == "avg":
            return [s.mean(dim=0) for s in self._stacked]
        return [s.prod(dim=0) for s in self._stacked]

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        n_branches = len(self.sizes)
        self._input_errors = [[] for _ in range(n_branches)]

        for stacked, errors in zip(self._stacked, output_errors):
            for b in range(n_branches):
                if self.mode == "sum":
                    branch_errors = errors
                elif self.mode == "avg":
                    branch_errors = errors / n_branches
                else:
                    others = [stacked[j] for j in range(n_branches) if j != b]
                    branch_errors = errors * _product(others, errors)
                self._input_errors[b].append(branch_errors)

    def _get_input_errors(self, copy: bool) -> list[list[torch.Tensor]]:
        if copy:
            return [[e.clone() for e in branch] for branch in self._input_errors]
        return self._input_errors


def _product(vectors: list[torch.Tensor], like: torch.Tensor) -> torch.Tensor:
    result = torch.ones_like(like)
    for v in vectors:
        result = result * v
    return result


class AffineProcessor(MergeProcessor):

    def __init__(
        self,
        sizes: Sequence[int],
        params: AffineParams,
        activation: Optional[str],
        propagate_to_input: bool = True,
        id: int = 0,
    ):
        super().__init__(sizes, propagate_to_input=propagate_to_input, id=id)
        self.layer = AffineLayer(
            params, activation, propagate_to_input=propagate_to_input, id=id
        )

    def _forward(self, branches) -> list[torch.Tensor]:
        self._check_branches(branches)
        return self.layer.forward(branches)

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self.layer.backward(output_errors)

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        return self.layer.get_params_errors(copy=copy)

    def _get_input_errors(self, copy: bool) -> list[list[torch.Tensor]]:
        return self.layer.get_input_errors(copy=copy)


class ConcatFeedforwardProcessor(MergeProcessor):

    def __init__(
        self,
        sizes: Sequence[int],
        params: LinearParams,
        activation: Optional[str],
        propagate_to_input: bool = True,
        id: int = 0,
    ):
        super().__init__(sizes, propagate_to_input=propagate_to_input, id=id)
        self.concat = ConcatProcessor(sizes, propagate_to_input=True, id=id)
        self.layer = FeedforwardLayer(
            params, activation, propagate_to_input=propagate_to_input, id=id
        )

    def _forward(self, branches) -> list[torch.Tensor]:
        return self.layer.forward(self.concat.forward(branches))

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self.layer.backward(output_errors)
        if self.propagate_to_input:
            self.concat.backward(self.layer.get_input_errors(copy=False))

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        return self.layer.get_params_errors(copy=copy)

    def _get_input_errors(self, copy: bool) -> list[list[torch.Tensor]]:
        return self.concat.get_input_errors(copy=copy)

"""
Parameters Errors Containers
============================
Gradient containers returned by ``get_params_errors()`` and consumed by
the optimizers' ``accumulate()``.

Their shape mirrors the composition of the model that produced them:

    - ParamsErrorsList:  flat list of (parameter, gradient) pairs, used by
                         every leaf encoder and by the merge layers.
    - CompositeParams:   merge-layer errors plus one slot per branch. A
                         frozen branch has ``None`` in its slot.
    - ReductionParams:   errors of the input encoder (or ``None`` when the
                         input is not optimized) plus the reduction layer.

Parameters are identified by object identity, never by value, so two
equal-valued tensors owned by different parameters stay separate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import torch
import torch.nn as nn


@dataclass
class ParamsError:
    """The gradient ``values`` of a single parameter ``owner``."""

    owner: nn.Parameter
    values: torch.Tensor

    def clone(self) -> ParamsError:
        return ParamsError(self.owner, self.values.detach().clone())


@dataclass
class ParamsErrorsList:
    """
    Ordered list of parameter errors.

    The same owner may appear more than once (for instance an embedding
    used by two tokens): consumers are expected to accumulate by owner.
    """

    errors: list[ParamsError] = field(default_factory=list)

    def __iter__(self) -> Iterator[ParamsError]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def __getitem__(self, index: int) -> ParamsError:
        return self.errors[index]

    def append(self, owner: nn.Parameter, values: torch.Tensor) -> None:
        self.errors.append(ParamsError(owner, values))

    def extend(self, other: ParamsErrorsList) -> None:
        self.errors.extend(other.errors)

    def get(self, owner: nn.Parameter) -> Optional[torch.Tensor]:
        """Return the first error recorded for ``owner``, or None."""
        for error in self.errors:
            if error.owner is owner:
                return error.values
        return None

    def clone(self) -> ParamsErrorsList:
        return ParamsErrorsList([e.clone() for e in self.errors])


@dataclass
class CompositeParams:
    """
    Params errors of a composite encoder.

    Parameters
    ----------
    merge : ParamsErrorsList or None
        Errors of the merge layer. None for merges without parameters
        (concatenation, sum, average, product).

    branches : list
        One entry per branch, in branch order: the params errors of the
        branch encoder, or None when the branch is frozen.
    """

    merge: Optional[ParamsErrorsList]
    branches: list[Any]

    def clone(self) -> CompositeParams:
        return CompositeParams(
            merge=self.merge.clone() if self.merge is not None else None,
            branches=[clone_params(b) for b in self.branches],
        )


@dataclass
class ReductionParams:
    """Params errors of a reduction encoder."""

    input: Any
    reduction: ParamsErrorsList

    def clone(self) -> ReductionParams:
        return ReductionParams(
            input=clone_params(self.input),
            reduction=self.reduction.clone(),
        )


def clone_params(params: Any) -> Any:
    """Deep-copy any params errors container; None stays None."""
    if params is None:
        return None
    return params.clone()

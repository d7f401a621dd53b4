"""
Composite Encoders
==================
One generic implementation behind every encoder that combines others
(concatenation, affine, feed-forward and weighted ensembles):

    sentence ─┬─► branch encoder 0 ─┐
              ├─► branch encoder 1 ─┼─► [dropout] ─► merge ─► token vectors
              └─► branch encoder N ─┘

Backward runs the same graph in reverse: the merge processor splits the
output errors into one error sequence per branch, in branch order, and
each branch that needs it is backwarded with its own slice.

Trainability:
    Every branch is an EnsembleComponent with a ``trainable`` flag. A
    frozen branch is backwarded only if its encoder propagates to input,
    its params errors are never collected (None in CompositeParams), and
    the composite optimizer holds None instead of an optimizer for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import torch
import torch.nn as nn

from tokensencoder.core.params import CompositeParams
from tokensencoder.encoders.base import (
    TokensEncoder,
    TokensEncoderModel,
    TokensEncoderOptimizer,
)
from tokensencoder.ensemble.merge import Merge
from tokensencoder.errors import ConfigurationError, ProtocolError
from tokensencoder.optim.params_optimizer import ParamsOptimizer
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)


@dataclass
class EnsembleComponent:
    """A branch model and whether it is trained with the composite."""

    model: TokensEncoderModel
    trainable: bool = True


class CompositeModel(TokensEncoderModel):
    """
    Base model of the composite kinds.

    Parameters
    ----------
    components : sequence of EnsembleComponent
        The branches, in order. At least one is required.

    merge : Merge
        How the branch vectors are combined.

    Raises
    ------
    ConfigurationError
        If there are no branches, a branch has no width, or the branch
        widths are incompatible with the merge.
    """

    def __init__(self, components: Sequence[EnsembleComponent], merge: Merge):
        components = list(components)
        if not components:
            raise ConfigurationError(
                f"{type(self).__name__} needs at least one component"
            )

        sizes = [c.model.encoding_size for c in components]
        merge.validate(sizes)

        super().__init__(encoding_size=merge.merged_size(sizes))
        self.models = nn.ModuleList([c.model for c in components])
        self.trainable = [c.trainable for c in components]
        self.merge = merge
        self.merge_params = merge.build_params(sizes)

        logger.info(
            f"{type(self).__name__}: {len(components)} branches {sizes} "
            f"→ {merge.name} → {self.encoding_size} "
            f"({sum(self.trainable)} trainable)"
        )

    @property
    def components(self) -> list[EnsembleComponent]:
        return [EnsembleComponent(m, t) for m, t in zip(self.models, self.trainable)]

    @property
    def branch_sizes(self) -> list[int]:
        return [m.encoding_size for m in self.models]


class CompositeEncoder(TokensEncoder):

    def __init__(self, model: CompositeModel, use_dropout: bool = False, id: int = 0):
        from tokensencoder.encoders.factory import build_encoder

        super().__init__(model, use_dropout=use_dropout, id=id)
        self.encoders = [
            build_encoder(m, use_dropout=use_dropout, id=id) for m in model.models
        ]
        self._needs_backward = [
            trainable or encoder.propagate_to_input
            for trainable, encoder in zip(model.trainable, self.encoders)
        ]
        self.merge_processor = model.merge.build_processor(
            model.branch_sizes,
            model.merge_params,
            propagate_to_input=any(self._needs_backward),
            id=id,
        )
        self._masks: Optional[list[list[torch.Tensor]]] = None

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        branches = [encoder.forward(sentence) for encoder in self.encoders]

        self._masks = None
        p = self.model.merge.dropout
        if self.use_dropout and p > 0.0:
            self._masks = [
                [torch.bernoulli(torch.full_like(v, 1.0 - p)) / (1.0 - p) for v in vectors]
                for vectors in branches
            ]
            branches = [
                [v * m for v, m in zip(vectors, masks)]
                for vectors, masks in zip(branches, self._masks)
            ]

        return self.merge_processor.forward(branches)

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self.merge_processor.backward(output_errors)
        if not self.merge_processor.propagate_to_input:
            return

        branches_errors = self.merge_processor.get_input_errors(copy=False)
        for b, (encoder, errors) in enumerate(zip(self.encoders, branches_errors)):
            if not self._needs_backward[b]:
                continue
            if self._masks is not None:
                errors = [e * m for e, m in zip(errors, self._masks[b])]
            encoder.backward(errors)

    def _get_params_errors(self, copy: bool) -> CompositeParams:
        return CompositeParams(
            merge=self.merge_processor.get_params_errors(copy=copy),
            branches=[
                encoder.get_params_errors(copy=copy) if trainable else None
                for encoder, trainable in zip(self.encoders, self.model.trainable)
            ],
        )


class CompositeOptimizer(TokensEncoderOptimizer):

    def __init__(self, model: CompositeModel, update_method: UpdateMethod):
        from tokensencoder.encoders.factory import build_optimizer

        super().__init__(model, update_method)
        self.merge_optimizer = (
            ParamsOptimizer(model.merge_params.parameters(), update_method)
            if model.merge_params is not None else None
        )
        self.branch_optimizers: list[Optional[TokensEncoderOptimizer]] = [
            build_optimizer(m, update_method) if trainable else None
            for m, trainable in zip(model.models, model.trainable)
        ]

    def accumulate(self, params_errors: CompositeParams, copy: bool = True) -> None:
        name = f"{type(self).__name__}[{self.model.kind.value}]"

        if not isinstance(params_errors, CompositeParams):
            raise ProtocolError(
                f"{name} expects CompositeParams, got {type(params_errors).__name__}"
            )
        if len(params_errors.branches) != len(self.branch_optimizers):
            raise ProtocolError(
                f"{name}: expected params errors for {len(self.branch_optimizers)} "
                f"branches, got {len(params_errors.branches)}"
            )
        if (params_errors.merge is None) != (self.merge_optimizer is None):
            raise ProtocolError(
                f"{name}: merge params errors "
                f"{'missing' if params_errors.merge is None else 'unexpected'}"
            )
        for b, (errors, optimizer) in enumerate(
            zip(params_errors.branches, self.branch_optimizers)
        ):
            if optimizer is None and errors is not None:
                raise ProtocolError(f"{name}: params errors given for frozen branch {b}")
            if optimizer is not None and errors is None:
                raise ProtocolError(f"{name}: params errors missing for trainable branch {b}")

        if self.merge_optimizer is not None:
            self.merge_optimizer.accumulate(params_errors.merge, copy=copy)
        for errors, optimizer in zip(params_errors.branches, self.branch_optimizers):
            if optimizer is not None:
                optimizer.accumulate(errors, copy=copy)

    def update(self) -> None:
        if self.merge_optimizer is not None:
            self.merge_optimizer.update()
        for optimizer in self.branch_optimizers:
            if optimizer is not None:
                optimizer.update()

"""
Params Optimizer
================
Bridges the explicit params-errors protocol and torch.optim: errors are
summed per parameter by ``accumulate()``, then ``update()`` writes the
sums into ``.grad``, steps the torch optimizer and clears everything for
the next batch.
"""

from __future__ import annotations

import logging
from typing import Iterable

import torch.nn as nn

from tokensencoder.core.accumulator import ParamsErrorsAccumulator
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.errors import ProtocolError
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)


class ParamsOptimizer:
    """
    Parameters
    ----------
    params : iterable of nn.Parameter
        The parameters this optimizer may update. Errors of any other
        parameter are rejected.

    update_method : UpdateMethod
        The update rule.
    """

    def __init__(self, params: Iterable[nn.Parameter], update_method: UpdateMethod):
        self.params = [p for p in params if p.requires_grad]
        self.update_method = update_method
        self._owners = {id(p) for p in self.params}
        self._accumulator = ParamsErrorsAccumulator()
        self._accumulator.reset()

        # torch.optim refuses an empty parameter list
        self._optimizer = update_method.build(self.params) if self.params else None

    @property
    def n_params(self) -> int:
        return sum(p.numel() for p in self.params)

    def accumulate(self, params_errors: ParamsErrorsList, copy: bool = True) -> None:
        for error in params_errors:
            if id(error.owner) not in self._owners:
                raise ProtocolError(
                    f"Params error of shape {tuple(error.values.shape)} refers "
                    f"to a parameter not handled by this optimizer"
                )
            self._accumulator.accumulate(error.owner, error.values, copy=copy)

    def update(self) -> None:
        if self._accumulator.is_empty:
            logger.debug("ParamsOptimizer.update() with no accumulated errors")
            return

        for error in self._accumulator.get_params_errors(copy=False):
            error.owner.grad = error.values.to(error.owner.dtype)

        self._optimizer.step()
        self._optimizer.zero_grad(set_to_none=True)
        self._accumulator.reset()

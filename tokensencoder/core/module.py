"""
Differentiable Module
=====================
The contract every encoder and every leaf layer follows:

    forward(input)            → list of output vectors
    backward(output_errors)   → consumes one error per output vector
    get_params_errors(copy)   → gradients of the parameters
    get_input_errors(copy)    → gradients of the input (if propagated)

A module is stateful and serves one forward/backward cycle at a time.
The state machine is explicit: ``backward`` is only legal after exactly
one ``forward``, and the errors must match the outputs of that forward
in number and shape. Violations raise ProtocolError instead of silently
computing on stale buffers.

AutogradProcessor is the default leaf implementation: the forward pass
is a plain torch computation and the backward pass asks torch.autograd
for the gradients of the parameters (and of the inputs when the module
propagates to input).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import torch
import torch.nn as nn

from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.errors import ProtocolError

logger = logging.getLogger(__name__)


class DifferentiableModule(ABC):
    """
    Base class of the forward/backward protocol.

    Subclasses implement ``_forward``, ``_backward``, ``_get_params_errors``
    and, when they can propagate to input, ``_get_input_errors``. The
    public methods wrap them with the life-cycle checks.

    Parameters
    ----------
    propagate_to_input : bool
        Whether ``get_input_errors`` is available after backward.

    id : int
        Identifier of the module, usually its slot in a pool.
    """

    def __init__(self, propagate_to_input: bool = False, id: int = 0):
        self.propagate_to_input = propagate_to_input
        self.id = id

        # Output shapes of the last forward; None means "not yet forwarded"
        self._output_shapes: Optional[list[tuple]] = None
        self._backward_done = False

        # Pool that issues this module, and its generation at the last forward
        self._pool: Any = None
        self._forward_generation: Optional[int] = None

    @property
    def name(self) -> str:
        return f"{type(self).__name__}(id={self.id})"

    # -------------------------------------------------------------------------
    # Public protocol
    # -------------------------------------------------------------------------

    def attach_pool(self, pool: Any) -> None:
        """Bind the module to the pool that issues it, enabling stale checks."""
        self._pool = pool

    def forward(self, input: Any) -> list[torch.Tensor]:
        if self._pool is not None:
            self._pool.check_current(self)
        self._output_shapes = None
        self._backward_done = False

        output = self._forward(input)
        self._output_shapes = [tuple(o.shape) for o in output]
        if self._pool is not None:
            self._forward_generation = self._pool.generation
        return output

    def backward(self, output_errors: Sequence[torch.Tensor]) -> None:
        if self._output_shapes is None:
            raise ProtocolError(f"{self.name}: backward called before forward")
        self._check_not_stale("backward")
        if self._backward_done:
            raise ProtocolError(
                f"{self.name}: backward called twice for the same forward"
            )

        output_errors = list(output_errors)
        if len(output_errors) != len(self._output_shapes):
            raise ProtocolError(
                f"{self.name}: expected {len(self._output_shapes)} output "
                f"errors, got {len(output_errors)}"
            )
        for i, (errors, shape) in enumerate(zip(output_errors, self._output_shapes)):
            if tuple(errors.shape) != shape:
                raise ProtocolError(
                    f"{self.name}: output errors {i} have shape "
                    f"{tuple(errors.shape)}, expected {shape}"
                )

        self._backward(output_errors)
        self._backward_done = True

    def get_params_errors(self, copy: bool = True) -> Any:
        self._check_backward_done("get_params_errors")
        return self._get_params_errors(copy)

    def get_input_errors(self, copy: bool = True) -> Any:
        if not self.propagate_to_input:
            raise ProtocolError(
                f"{self.name}: input errors requested but the module does "
                f"not propagate to input"
            )
        self._check_backward_done("get_input_errors")
        return self._get_input_errors(copy)

    def _check_backward_done(self, method: str) -> None:
        if not self._backward_done:
            raise ProtocolError(f"{self.name}: {method} called before backward")
        self._check_not_stale(method)

    def _check_not_stale(self, method: str) -> None:
        pool = self._pool
        if pool is None:
            return
        if pool.is_stale(self) or self._forward_generation != pool.generation:
            raise ProtocolError(
                f"{self.name}: {method} on a stale cycle, the module was "
                f"released by its pool (generation {pool.generation}) after "
                f"its last forward"
            )

    # -------------------------------------------------------------------------
    # Implementation hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _forward(self, input: Any) -> list[torch.Tensor]:
        ...

    @abstractmethod
    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        ...

    @abstractmethod
    def _get_params_errors(self, copy: bool) -> Any:
        ...

    def _get_input_errors(self, copy: bool) -> Any:
        raise ProtocolError(f"{self.name}: input errors are not available")


class AutogradProcessor(DifferentiableModule):
    """
    Leaf module computed with torch and differentiated with autograd.

    Subclasses provide ``_prepare_inputs`` (raw input → list of 2-D
    tensors, one row per token) and ``_compute`` (those tensors → one 2-D
    output tensor). Outputs are returned as one detached vector per row.

    Parameters
    ----------
    params : sequence of nn.Parameter
        Parameters whose gradients are reported. Parameters with
        ``requires_grad=False`` are skipped.

    propagate_to_input : bool
        Whether the gradients of the inputs are computed too.

    id : int
        Identifier of the processor.
    """

    def __init__(
        self,
        params: Sequence[nn.Parameter],
        propagate_to_input: bool = False,
        id: int = 0,
    ):
        super().__init__(propagate_to_input=propagate_to_input, id=id)
        self.params = list(params)

        self._inputs: list[torch.Tensor] = []
        self._output: Optional[torch.Tensor] = None
        self._params_errors = ParamsErrorsList()
        self._input_grads: list[torch.Tensor] = []

    @abstractmethod
    def _prepare_inputs(self, input: Any) -> list[torch.Tensor]:
        ...

    @abstractmethod
    def _compute(self, inputs: list[torch.Tensor]) -> torch.Tensor:
        ...

    def _forward(self, input: Any) -> list[torch.Tensor]:
        inputs = []
        for x in self._prepare_inputs(input):
            x = x.detach()
            if self.propagate_to_input and x.is_floating_point():
                x.requires_grad_(True)
            inputs.append(x)

        with torch.enable_grad():
            output = self._compute(inputs)

        self._inputs = inputs
        self._output = output
        return list(output.detach())

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        output = self._output
        trainable = [p for p in self.params if p.requires_grad]
        wrt_inputs = self._inputs if self.propagate_to_input else []
        targets = trainable + wrt_inputs

        if output_errors and output.requires_grad and targets:
            grads = torch.autograd.grad(
                output,
                targets,
                grad_outputs=torch.stack(output_errors),
                allow_unused=True,
            )
        else:
            # No tokens, or nothing in the graph depends on a target
            grads = [None] * len(targets)

        grads = [
            torch.zeros_like(t) if g is None else g
            for t, g in zip(targets, grads)
        ]

        self._params_errors = ParamsErrorsList()
        for p, g in zip(trainable, grads[:len(trainable)]):
            self._params_errors.append(p, g.detach())
        self._input_grads = [g.detach() for g in grads[len(trainable):]]

        # Release the graph
        self._output = None

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        return self._params_errors.clone() if copy else self._params_errors

    def _get_input_errors(self, copy: bool) -> Any:
        grads = [g.clone() if copy else g for g in self._input_grads]
        if len(grads) == 1:
            return list(grads[0])
        return [list(g) for g in grads]

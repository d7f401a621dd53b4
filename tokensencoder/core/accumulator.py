"""
Params Errors Accumulator
=========================
Sums the gradients of the same parameter coming from several places
(several tokens, several encoders of a pool, several sentences) and can
average them by the number of contributions.

Usage:
    >>> acc = ParamsErrorsAccumulator()
    >>> acc.reset()
    >>> acc.accumulate(param, torch.full((3,), 2.0))
    >>> acc.accumulate(param, torch.full((3,), 4.0))
    >>> acc.accumulate(param, torch.full((3,), 6.0))
    >>> acc.get_params_errors()[0].values     # tensor([12., 12., 12.])
    >>> acc.average_errors()
    >>> acc.get_params_errors()[0].values     # tensor([4., 4., 4.])
"""

from __future__ import annotations

from typing import Iterable, Optional

import torch
import torch.nn as nn

from tokensencoder.core.params import ParamsError, ParamsErrorsList
from tokensencoder.errors import ProtocolError


class _Entry:
    __slots__ = ("owner", "values", "count")

    def __init__(self, owner: nn.Parameter, values: torch.Tensor):
        self.owner = owner
        self.values = values
        self.count = 1


class ParamsErrorsAccumulator:
    """
    Accumulates params errors keyed by parameter identity.

    Entries keep the insertion order of their first contribution, so the
    returned ParamsErrorsList is deterministic.
    """

    def __init__(self):
        # None until the first reset() or accumulate()
        self._entries: Optional[dict[int, _Entry]] = None

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def reset(self) -> None:
        self._entries = {}

    def accumulate(
        self,
        owner: nn.Parameter,
        values: torch.Tensor,
        copy: bool = True,
    ) -> None:
        """
        Add ``values`` to the sum kept for ``owner``.

        With ``copy=False`` the first contribution of an owner is stored
        by reference; later contributions never modify it in place.
        """
        if self._entries is None:
            self._entries = {}

        if tuple(values.shape) != tuple(owner.shape):
            raise ProtocolError(
                f"Params error of shape {tuple(values.shape)} does not match "
                f"its parameter of shape {tuple(owner.shape)}"
            )

        entry = self._entries.get(id(owner))
        if entry is None:
            stored = values.detach().clone() if copy else values.detach()
            self._entries[id(owner)] = _Entry(owner, stored)
        else:
            entry.values = entry.values + values.detach()
            entry.count += 1

    def accumulate_all(
        self,
        params_errors: Iterable[ParamsError],
        copy: bool = True,
    ) -> None:
        for error in params_errors:
            self.accumulate(error.owner, error.values, copy=copy)

    def average_errors(self) -> None:
        """Divide every sum by its number of contributions."""
        self._check_used()
        for entry in self._entries.values():
            if entry.count > 1:
                entry.values = entry.values / entry.count
                entry.count = 1

    def get_params_errors(self, copy: bool = True) -> ParamsErrorsList:
        self._check_used()
        return ParamsErrorsList([
            ParamsError(e.owner, e.values.clone() if copy else e.values)
            for e in self._entries.values()
        ])

    def _check_used(self) -> None:
        if self._entries is None:
            raise ProtocolError(
                "ParamsErrorsAccumulator queried before any reset() or "
                "accumulate()"
            )

    def __len__(self) -> int:
        return len(self._entries) if self._entries else 0

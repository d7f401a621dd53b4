"""
Update Methods
==============
Configuration of the rule that turns accumulated gradients into
parameter updates. ``build()`` returns the matching torch.optim
optimizer over a given set of parameters.

Usage:
    >>> method = UpdateMethod(name="adam", learning_rate=1e-3)
    >>> optimizer = method.build(model.parameters())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import torch
import torch.nn as nn

from tokensencoder.errors import ConfigurationError

UPDATE_METHODS = ("sgd", "adam", "adamw", "adagrad")


@dataclass
class UpdateMethod:
    """
    Parameters
    ----------
    name : str
        One of "sgd", "adam", "adamw", "adagrad".

    learning_rate : float
        Step size.

    weight_decay : float
        L2 penalty (decoupled for adamw).

    momentum : float
        Momentum of sgd; ignored by the other methods.

    betas : list of float
        Exponential decay rates of adam and adamw.
    """
    name: str = "adam"
    learning_rate: float = 1e-3
    weight_decay: float = 0.0
    momentum: float = 0.0
    betas: list[float] = field(default_factory=lambda: [0.9, 0.999])

    def validate(self) -> None:
        if self.name not in UPDATE_METHODS:
            raise ConfigurationError(
                f"Unknown update method '{self.name}'. "
                f"Available: {list(UPDATE_METHODS)}"
            )
        if self.learning_rate <= 0:
            raise ConfigurationError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )
        if self.weight_decay < 0:
            raise ConfigurationError(
                f"weight_decay must be non-negative, got {self.weight_decay}"
            )
        if not 0.0 <= self.momentum < 1.0:
            raise ConfigurationError(
                f"momentum must be in [0, 1), got {self.momentum}"
            )
        if len(self.betas) != 2 or not all(0.0 <= b < 1.0 for b in self.betas):
            raise ConfigurationError(
                f"betas must be two values in [0, 1), got {self.betas}"
            )

    def build(self, params: Iterable[nn.Parameter]) -> torch.optim.Optimizer:
        self.validate()
        params = list(params)

        if self.name == "sgd":
            return torch.optim.SGD(
                params,
                lr=self.learning_rate,
                momentum=self.momentum,
                weight_decay=self.weight_decay,
            )
        if self.name == "adam":
            return torch.optim.Adam(
                params,
                lr=self.learning_rate,
                betas=tuple(self.betas),
                weight_decay=self.weight_decay,
            )
        if self.name == "adamw":
            return torch.optim.AdamW(
                params,
                lr=self.learning_rate,
                betas=tuple(self.betas),
                weight_decay=self.weight_decay,
            )
        return torch.optim.Adagrad(
            params,
            lr=self.learning_rate,
            weight_decay=self.weight_decay,
        )

"""
Embeddings Map
==============
A string-keyed table of trainable vectors with a dedicated "unknown"
vector for missing keys and for dropout.

Each vector is its own nn.Parameter, so params errors are naturally
keyed by embedding and two tokens sharing a key contribute to the same
owner.

Usage:
    >>> emb = EmbeddingsMap(size=50, keys=["the", "cat"])
    >>> emb.get("cat").shape           # torch.Size([50])
    >>> emb.get("dog") is emb.unknown  # True
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import torch
import torch.nn as nn

from tokensencoder.errors import ConfigurationError

logger = logging.getLogger(__name__)


class EmbeddingsMap(nn.Module):
    """
    Parameters
    ----------
    size : int
        Width of every embedding vector.

    keys : iterable of str
        Keys to create at construction time (in order).

    init_std : float
        Standard deviation of the normal initialization.
    """

    def __init__(self, size: int, keys: Iterable[str] = (), init_std: float = 0.1):
        super().__init__()
        if size <= 0:
            raise ConfigurationError(f"Embeddings size must be positive, got {size}")

        self.size = size
        self.init_std = init_std
        self._index: dict[str, int] = {}
        self.vectors = nn.ParameterList()
        self.unknown = nn.Parameter(torch.empty(size).normal_(0.0, init_std))

        for key in keys:
            self.set(key)

    def set(self, key: str, values: Optional[torch.Tensor] = None) -> nn.Parameter:
        """Create (or overwrite) the vector of ``key``."""
        if values is None:
            values = torch.empty(self.size).normal_(0.0, self.init_std)
        elif tuple(values.shape) != (self.size,):
            raise ConfigurationError(
                f"Embedding '{key}' has shape {tuple(values.shape)}, "
                f"expected ({self.size},)"
            )

        if key in self._index:
            vector = self.vectors[self._index[key]]
            with torch.no_grad():
                vector.copy_(values)
            return vector

        self._index[key] = len(self.vectors)
        vector = nn.Parameter(values.detach().clone())
        self.vectors.append(vector)
        return vector

    def get(self, key: Optional[str], dropout: float = 0.0) -> nn.Parameter:
        """
        Return the vector of ``key``.

        The unknown vector is returned for a None or missing key, and,
        with probability ``dropout``, in place of a known one.
        """
        if key is None or key not in self._index:
            return self.unknown
        if dropout > 0.0 and torch.rand(()).item() < dropout:
            return self.unknown
        return self.vectors[self._index[key]]

    def keys(self) -> list[str]:
        return list(self._index)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)

    def extra_repr(self) -> str:
        return f"size={self.size}, n_keys={len(self)}"

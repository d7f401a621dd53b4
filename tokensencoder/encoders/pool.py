"""
Tokens Encoders Pool
====================
A pool of encoders of one model, so that a batch of sentences can be
encoded in parallel cycles without rebuilding encoders every time.

Usage:
    >>> pool = TokensEncodersPool(model, use_dropout=True)
    >>> encoders = pool.get_encoders(len(batch))   # ids 0..len(batch)-1
    >>> for encoder, sentence in zip(encoders, batch):
    ...     encoder.forward(sentence)
"""

from __future__ import annotations

from tokensencoder.core.pool import ItemsPool
from tokensencoder.encoders.base import TokensEncoder, TokensEncoderModel
from tokensencoder.encoders.factory import build_encoder


class TokensEncodersPool(ItemsPool[TokensEncoder]):
    """
    Parameters
    ----------
    model : TokensEncoderModel
        The model every encoder of the pool is built from.

    use_dropout : bool
        Whether the encoders apply dropout.
    """

    def __init__(self, model: TokensEncoderModel, use_dropout: bool = False):
        super().__init__(
            factory=lambda id: build_encoder(model, use_dropout=use_dropout, id=id)
        )
        self.model = model
        self.use_dropout = use_dropout

    def get_encoders(self, n: int) -> list[TokensEncoder]:
        """Release every encoder, then return ``n`` of them."""
        return self.get_items(n)

"""
tokensencoder.encoders — Tokens Encoder Kinds
=============================================
Leaf encoders and the Model / Encoder / Optimizer base classes.

Modules:
    - base.py         — ModelKind, TokensEncoderModel, TokensEncoder, optimizers
    - embeddings.py   — embeddings lookup by key
    - chars.py        — characters BiRNN and attention encoders
    - transformer.py  — transformer backbone encoder
    - morpho.py       — morphological features encoder
    - reduction.py    — input encoder + dense reduction
    - wrapper.py      — sentence conversion before another encoder
    - factory.py      — kind → encoder / optimizer dispatch
    - pool.py         — pool of encoders of one model

factory.py and pool.py are not imported here: they depend on the
composite kinds in tokensencoder.ensemble, which depend on this package.
"""

from tokensencoder.encoders.base import (
    LeafOptimizer,
    ModelKind,
    TokensEncoder,
    TokensEncoderModel,
    TokensEncoderOptimizer,
)
from tokensencoder.encoders.chars import (
    CharsAttentionEncoderModel,
    CharsBiRNNEncoderModel,
)
from tokensencoder.encoders.embeddings import EmbeddingsEncoderModel
from tokensencoder.encoders.morpho import MorphoEncoderModel
from tokensencoder.encoders.reduction import ReductionEncoderModel
from tokensencoder.encoders.transformer import TransformerBackbone, TransformerEncoderModel
from tokensencoder.encoders.wrapper import MirrorConverter, TokensEncoderWrapperModel

"""
tokensencoder.ensemble — Encoders Made of Encoders
"""

from tokensencoder.ensemble.composite import (
    CompositeEncoder,
    CompositeModel,
    CompositeOptimizer,
    EnsembleComponent,
)
from tokensencoder.ensemble.merge import (
    MERGES,
    AffineMerge,
    AvgMerge,
    ConcatFeedforwardMerge,
    ConcatMerge,
    Merge,
    ProductMerge,
    SumMerge,
    build_merge,
)
from tokensencoder.ensemble.models import (
    AffineTokensEncoderModel,
    ConcatTokensEncoderModel,
    EnsembleTokensEncoderModel,
    FFTokensEncoderModel,
)

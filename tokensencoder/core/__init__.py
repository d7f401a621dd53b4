"""
tokensencoder.core — Protocol Runtime
=====================================
The model-agnostic machinery every encoder is built on:

    - module.py       — forward/backward life cycle, autograd-backed leaves
    - params.py       — params errors containers
    - accumulator.py  — per-parameter gradient accumulation and averaging
    - pool.py         — reusable items with stable ids and generations
    - layers.py       — feed-forward and affine leaf layers
    - embeddings.py   — string-keyed embeddings table
"""

from tokensencoder.core.accumulator import ParamsErrorsAccumulator
from tokensencoder.core.embeddings import EmbeddingsMap
from tokensencoder.core.module import AutogradProcessor, DifferentiableModule
from tokensencoder.core.params import (
    CompositeParams,
    ParamsError,
    ParamsErrorsList,
    ReductionParams,
)
from tokensencoder.core.pool import ItemsPool

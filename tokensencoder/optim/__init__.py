"""
tokensencoder.optim — Update Rules
"""

from tokensencoder.optim.params_optimizer import ParamsOptimizer
from tokensencoder.optim.update import UPDATE_METHODS, UpdateMethod

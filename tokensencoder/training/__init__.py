"""
tokensencoder.training — Training Loop
"""

from tokensencoder.training.trainer import EncoderTrainer, mse_errors

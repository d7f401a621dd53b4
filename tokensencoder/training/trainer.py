"""
tokensencoder Trainer
=====================
A minimal training loop driving the encoder protocol end to end:

    for each batch:
        encoders = pool.get_encoders(len(batch))
        for each (encoder, sentence):
            vectors = encoder.forward(sentence)
            loss, errors = errors_fn(sentence, vectors)
            encoder.backward(errors)
            optimizer.accumulate(encoder.get_params_errors(copy=False))
        optimizer.update()

The loss lives outside the encoder: ``errors_fn`` receives the sentence
and its vectors and returns the loss value and the gradient of the loss
with respect to each vector. ``mse_errors`` builds one for regression
targets.

Usage:
    >>> trainer = EncoderTrainer(model, config.training, mse_errors(targets_fn))
    >>> results = trainer.train(sentences)
    >>> results["final_loss"]
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

import torch
from tqdm import tqdm

from tokensencoder.config import TrainingConfig
from tokensencoder.encoders.base import TokensEncoderModel
from tokensencoder.encoders.pool import TokensEncodersPool

logger = logging.getLogger(__name__)

ErrorsFn = Callable[[Any, list[torch.Tensor]], tuple[float, list[torch.Tensor]]]


def mse_errors(targets_fn: Callable[[Any], Sequence[torch.Tensor]]) -> ErrorsFn:
    """
    Squared-error loss against per-token targets.

    Parameters
    ----------
    targets_fn : callable
        ``targets_fn(sentence)`` returns one target vector per token.

    Returns
    -------
    callable
        ``errors_fn(sentence, vectors) -> (loss, errors)`` where the loss
        is the mean over tokens of ½‖v − t‖² and the errors are v − t.
    """
    def errors_fn(sentence: Any, vectors: list[torch.Tensor]) -> tuple[float, list[torch.Tensor]]:
        targets = targets_fn(sentence)
        errors = [v - t for v, t in zip(vectors, targets)]
        if not errors:
            return 0.0, []
        loss = sum(0.5 * float(e.pow(2).sum()) for e in errors) / len(errors)
        return loss, errors

    return errors_fn


class EncoderTrainer:
    """
    Parameters
    ----------
    model : TokensEncoderModel
        The model to train.

    config : TrainingConfig
        Update rule, batching and logging settings.

    errors_fn : callable
        ``errors_fn(sentence, vectors) -> (loss, errors)``.

    name : str
        Human-readable name for this training run (for logging).
    """

    def __init__(
        self,
        model: TokensEncoderModel,
        config: TrainingConfig,
        errors_fn: ErrorsFn,
        name: str = "trainer",
    ):
        config.validate()
        self.model = model
        self.config = config
        self.errors_fn = errors_fn
        self.name = name

        self.optimizer = model.build_optimizer(config.update_method)
        self.pool = TokensEncodersPool(model, use_dropout=config.use_dropout)
        self.global_step = 0

        logger.info(
            f"Trainer '{name}' initialized for {model.kind.value} encoder with "
            f"{model.n_params / 1e3:.1f}K parameters, "
            f"{config.update_method.name} lr={config.update_method.learning_rate}"
        )

    def train_step(self, sentences: Sequence[Any]) -> float:
        """
        Run one forward/backward cycle per sentence, then one update.

        Returns
        -------
        float
            Mean loss over the sentences.
        """
        if not sentences:
            logger.warning(f"[{self.name}] Empty batch skipped")
            return 0.0

        total_loss = 0.0
        for encoder, sentence in zip(self.pool.get_encoders(len(sentences)), sentences):
            vectors = encoder.forward(sentence)
            loss, errors = self.errors_fn(sentence, vectors)
            encoder.backward(errors)
            self.optimizer.accumulate(encoder.get_params_errors(copy=False), copy=False)
            total_loss += loss

        self.optimizer.update()
        self.global_step += 1
        return total_loss / len(sentences)

    def train(self, sentences: Sequence[Any], epochs: Optional[int] = None) -> dict:
        """
        Train over ``sentences`` for ``epochs`` (default: config.epochs).

        Returns
        -------
        dict
            - epoch_losses: mean loss of each epoch
            - final_loss: mean loss of the last epoch
            - total_steps: optimizer updates performed
            - total_time_seconds: wall-clock training time
        """
        epochs = epochs if epochs is not None else self.config.epochs
        batch_size = self.config.batch_size
        results = {
            "epoch_losses": [],
            "final_loss": None,
            "total_steps": 0,
            "total_time_seconds": 0.0,
        }

        if not sentences:
            logger.warning(f"[{self.name}] No training sentences, nothing to do")
            return results

        generator = torch.Generator().manual_seed(self.config.seed)
        torch.manual_seed(self.config.seed)
        n_batches = (len(sentences) + batch_size - 1) // batch_size

        logger.info(
            f"[{self.name}] Starting training: {epochs} epochs, "
            f"{n_batches} batches/epoch, {len(sentences)} sentences"
        )
        start_time = time.time()

        for epoch in range(epochs):
            order = torch.randperm(len(sentences), generator=generator).tolist()
            epoch_loss = 0.0

            progress = tqdm(
                range(n_batches),
                desc=f"{self.name} epoch {epoch + 1}/{epochs}",
                disable=not self.config.progress_bar,
            )
            for batch_idx in progress:
                batch = [sentences[i] for i in order[batch_idx * batch_size:(batch_idx + 1) * batch_size]]
                loss = self.train_step(batch)
                epoch_loss += loss * len(batch)
                progress.set_postfix(loss=f"{loss:.4f}")

                if self.config.log_every and (batch_idx + 1) % self.config.log_every == 0:
                    logger.info(
                        f"[{self.name}] Epoch {epoch + 1} batch {batch_idx + 1}/{n_batches}: "
                        f"loss={loss:.4f}"
                    )

            epoch_loss /= len(sentences)
            results["epoch_losses"].append(epoch_loss)
            results["final_loss"] = epoch_loss
            logger.info(f"[{self.name}] Epoch {epoch + 1}/{epochs}: loss={epoch_loss:.4f}")

        results["total_steps"] = self.global_step
        results["total_time_seconds"] = time.time() - start_time

        logger.info(
            f"[{self.name}] Training complete in {results['total_time_seconds']:.1f}s, "
            f"final_loss={results['final_loss']:.4f}"
        )
        return results

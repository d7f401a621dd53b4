"""
Characters Encoders
===================
Encode every token from the characters of its form:

    chars of the token → char embeddings → bidirectional RNN (LSTM/GRU)
                       → pooling → Linear → tanh → token vector

Two model kinds share the same network and differ only in the pooling:

    - CharsBiRNNEncoderModel:      last states of both directions
    - CharsAttentionEncoderModel:  attention over the RNN outputs

Each token is processed by its own CharsProcessor, taken from a pool
that is released at every forward. After backward, the errors of the
network parameters are summed over the tokens, while the errors of the
char embeddings are averaged per character.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from tokensencoder.core.accumulator import ParamsErrorsAccumulator
from tokensencoder.core.embeddings import EmbeddingsMap
from tokensencoder.core.module import AutogradProcessor
from tokensencoder.core.params import ParamsErrorsList
from tokensencoder.core.pool import ItemsPool
from tokensencoder.encoders.base import ModelKind, TokensEncoder, TokensEncoderModel
from tokensencoder.errors import ConfigurationError

logger = logging.getLogger(__name__)

CELLS = {"lstm": nn.LSTM, "gru": nn.GRU}
POOLINGS = ("last", "attention")


class CharsNetwork(nn.Module):
    """
    Shared network of the characters encoders.

    Parameters
    ----------
    alphabet : str
        Characters with a dedicated embedding. Others use the unknown one.

    char_embedding_size : int
        Width of the char embeddings.

    hidden_size : int
        Hidden size of each RNN direction.

    output_size : int
        Width of the token vectors.

    cell : str
        "lstm" or "gru".

    pooling : str
        "last" or "attention".

    attention_size : int
        Width of the attention scoring space (attention pooling only).
    """

    def __init__(
        self,
        alphabet: str,
        char_embedding_size: int,
        hidden_size: int,
        output_size: int,
        cell: str = "lstm",
        pooling: str = "last",
        attention_size: int = 16,
    ):
        super().__init__()
        if cell not in CELLS:
            raise ConfigurationError(
                f"Unknown RNN cell '{cell}'. Available: {sorted(CELLS)}"
            )
        if pooling not in POOLINGS:
            raise ConfigurationError(
                f"Unknown pooling '{pooling}'. Available: {list(POOLINGS)}"
            )
        if hidden_size <= 0 or attention_size <= 0:
            raise ConfigurationError(
                f"hidden_size and attention_size must be positive, got "
                f"{hidden_size} and {attention_size}"
            )

        self.cell = cell
        self.pooling = pooling
        self.char_embeddings = EmbeddingsMap(char_embedding_size, keys=dict.fromkeys(alphabet))
        self.rnn = CELLS[cell](
            char_embedding_size,
            hidden_size,
            batch_first=True,
            bidirectional=True,
        )
        if pooling == "attention":
            self.attention = nn.Linear(2 * hidden_size, attention_size)
            self.context = nn.Parameter(torch.empty(attention_size).normal_(0.0, 0.1))
        self.output = nn.Linear(2 * hidden_size, output_size)

    def processor_parameters(self) -> list[nn.Parameter]:
        """Every parameter except the char embeddings."""
        return [
            p for name, p in self.named_parameters()
            if not name.startswith("char_embeddings.")
        ]

    def encode(self, chars: torch.Tensor) -> torch.Tensor:
        """Encode the ``[n_chars, char_embedding_size]`` chars of one token."""
        outputs, hidden = self.rnn(chars.unsqueeze(0))
        if self.pooling == "last":
            h = hidden[0] if self.cell == "lstm" else hidden
            pooled = torch.cat([h[0, 0], h[1, 0]])
        else:
            states = outputs[0]
            scores = torch.tanh(self.attention(states)) @ self.context
            weights = F.softmax(scores, dim=0)
            pooled = weights @ states
        return torch.tanh(self.output(pooled))


class CharsProcessor(AutogradProcessor):
    """Runs the chars network on a single token."""

    def __init__(self, network: CharsNetwork, id: int = 0):
        super().__init__(
            params=network.processor_parameters(),
            propagate_to_input=True,
            id=id,
        )
        self.network = network

    def _prepare_inputs(self, input) -> list[torch.Tensor]:
        return [torch.stack(list(input))]

    def _compute(self, inputs: list[torch.Tensor]) -> torch.Tensor:
        return self.network.encode(inputs[0]).unsqueeze(0)


class CharsEncoderModel(TokensEncoderModel):
    """Common model of the characters encoders; see CharsNetwork."""

    pooling = "last"

    def __init__(
        self,
        alphabet: str,
        char_embedding_size: int,
        hidden_size: int,
        encoding_size: int,
        cell: str = "lstm",
        attention_size: int = 16,
        dropout: float = 0.0,
    ):
        super().__init__(encoding_size=encoding_size)
        if not 0.0 <= dropout < 1.0:
            raise ConfigurationError(f"Chars dropout must be in [0, 1), got {dropout}")

        self.dropout = dropout
        self.network = CharsNetwork(
            alphabet=alphabet,
            char_embedding_size=char_embedding_size,
            hidden_size=hidden_size,
            output_size=encoding_size,
            cell=cell,
            pooling=self.pooling,
            attention_size=attention_size,
        )
        logger.info(
            f"{type(self).__name__}: {len(self.network.char_embeddings)} chars, "
            f"{cell} {hidden_size}×2 → {encoding_size}, "
            f"{self.n_params / 1e3:.1f}K params"
        )


class CharsBiRNNEncoderModel(CharsEncoderModel):
    kind = ModelKind.CHARS_BIRNN
    pooling = "last"


class CharsAttentionEncoderModel(CharsEncoderModel):
    kind = ModelKind.CHARS_ATTENTION
    pooling = "attention"


class CharsEncoder(TokensEncoder):

    def __init__(self, model: CharsEncoderModel, use_dropout: bool = False, id: int = 0):
        super().__init__(model, use_dropout=use_dropout, id=id)
        self._processors = ItemsPool(lambda i: CharsProcessor(model.network, id=i))
        self._used: list[CharsProcessor] = []
        self._last_chars: list[list[nn.Parameter]] = []
        self._network_errors = ParamsErrorsAccumulator()
        self._chars_errors = ParamsErrorsAccumulator()

    def _forward(self, sentence: Any) -> list[torch.Tensor]:
        tokens = sentence.tokens
        self._used = self._processors.get_items(len(tokens))
        self._last_chars = [self._get_chars(token.form) for token in tokens]

        return [
            processor.forward(chars)[0]
            for processor, chars in zip(self._used, self._last_chars)
        ]

    def _backward(self, output_errors: list[torch.Tensor]) -> None:
        self._network_errors.reset()
        self._chars_errors.reset()

        for processor, chars, errors in zip(self._used, self._last_chars, output_errors):
            processor.backward([errors])
            self._network_errors.accumulate_all(processor.get_params_errors(copy=False))
            for char, char_errors in zip(chars, processor.get_input_errors(copy=False)):
                self._chars_errors.accumulate(char, char_errors)

        self._chars_errors.average_errors()

    def _get_params_errors(self, copy: bool) -> ParamsErrorsList:
        errors = self._network_errors.get_params_errors(copy=copy)
        errors.extend(self._chars_errors.get_params_errors(copy=copy))
        return errors

    def _get_chars(self, form: str) -> list[nn.Parameter]:
        embeddings = self.model.network.char_embeddings
        dropout = self.model.dropout if self.use_dropout else 0.0
        # An empty form is read as a single unknown char
        chars: list[Optional[str]] = list(form) or [None]
        return [embeddings.get(c, dropout=dropout) for c in chars]

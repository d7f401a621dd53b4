"""
tokensencoder Configuration System
==================================
Dataclass configuration for building encoder models and training them.
An encoder is described by a tree of EncoderConfig nodes: leaves are the
base kinds (embeddings, chars, transformer, morpho), inner nodes are the
composite kinds and the reduction / wrapper kinds.

Usage:
    # Load from YAML file:
    >>> config = TokensEncoderConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = TokensEncoderConfig(
    ...     encoder=EncoderConfig(
    ...         kind="concat",
    ...         components=[
    ...             EncoderConfig(kind="embeddings", encoding_size=50, vocabulary=words),
    ...             EncoderConfig(kind="chars_birnn", encoding_size=25),
    ...         ],
    ...     ),
    ... )

    # Save to YAML:
    >>> config.to_yaml("configs/my_encoder.yaml")

    # Build the model:
    >>> from tokensencoder.builder import build_model
    >>> model = build_model(config.encoder)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from tokensencoder.encoders.base import ModelKind
from tokensencoder.errors import ConfigurationError
from tokensencoder.optim.update import UpdateMethod

logger = logging.getLogger(__name__)

LEAF_KINDS = ("embeddings", "chars_birnn", "chars_attention", "transformer", "morpho")
COMPOSITE_KINDS = ("concat", "affine", "feedforward", "ensemble")
MERGE_NAMES = ("concat", "sum", "avg", "product", "affine", "concat_feedforward")
CONVERTER_NAMES = ("mirror",)
DEFAULT_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.,;:'\"-!?()"


# =============================================================================
# Encoder Configuration
# =============================================================================

@dataclass
class EncoderConfig:
    """
    One node of the encoder tree. Only the fields relevant to ``kind``
    are read.

    Parameters
    ----------
    kind : str
        One of the ModelKind values: "embeddings", "chars_birnn",
        "chars_attention", "transformer", "morpho", "reduction",
        "wrapper", "concat", "affine", "feedforward", "ensemble".

    encoding_size : int
        Width of the token vectors. Derived for "concat" and "wrapper"
        and for "ensemble" with a parameterless merge.

    vocabulary : list of str
        Keys of the embeddings ("embeddings") or of the backbone input
        embeddings ("transformer").

    key_extractors : list of str
        Embedding key extractors tried in order: "word", "norm_word".

    frequencies : dict
        Key occurrences for frequency-scaled embeddings dropout.

    dropout : float
        Embeddings / char embeddings dropout, or merge dropout for the
        composite kinds.

    activation : str, optional
        Activation of morpho, reduction, affine and feedforward layers.

    alphabet : str
        Characters with their own embedding (chars kinds).

    char_embedding_size, hidden_size, attention_size : int
        Chars network sizes.

    cell : str
        "lstm" or "gru".

    n_heads, n_layers, ff_size, max_length : int
        Transformer backbone shape.

    fine_tuning : bool
        Whether the transformer backbone is trained.

    propagate_to_input : bool
        Whether the transformer encoder exposes input errors.

    features : list of str
        Features dictionary of the morpho kind.

    merge : str
        Merge of the "ensemble" kind.

    components : list of EncoderConfig
        Branches of the composite kinds.

    trainable : bool
        Whether this node is trained when it is an ensemble branch. The
        other composite kinds train every component and reject False.

    input : EncoderConfig, optional
        Input encoder of "reduction" and wrapped encoder of "wrapper".

    optimize_input : bool
        Whether a reduction trains its input encoder.

    converter : str
        Sentence converter of "wrapper".
    """
    kind: str = "embeddings"
    encoding_size: int = 0
    vocabulary: list[str] = field(default_factory=list)
    key_extractors: list[str] = field(default_factory=lambda: ["word"])
    frequencies: dict[str, int] = field(default_factory=dict)
    dropout: float = 0.0
    activation: Optional[str] = None
    alphabet: str = DEFAULT_ALPHABET
    char_embedding_size: int = 16
    hidden_size: int = 16
    attention_size: int = 16
    cell: str = "lstm"
    n_heads: int = 2
    n_layers: int = 1
    ff_size: int = 64
    max_length: int = 128
    fine_tuning: bool = False
    propagate_to_input: bool = False
    features: list[str] = field(default_factory=list)
    merge: str = "concat"
    components: list[EncoderConfig] = field(default_factory=list)
    trainable: bool = True
    input: Optional[EncoderConfig] = None
    optimize_input: bool = True
    converter: str = "mirror"

    def validate(self, path: str = "encoder") -> None:
        """
        Check this node and its children.

        Raises
        ------
        ConfigurationError
            If the node is inconsistent. The message names the node path,
            e.g. ``encoder.components[1]``.
        """
        kinds = [k.value for k in ModelKind]
        if self.kind not in kinds:
            raise ConfigurationError(
                f"{path}: unknown kind '{self.kind}'. Choose from: {kinds}"
            )
        if not 0.0 <= self.dropout < 1.0 and not (self.kind == "embeddings" and self.frequencies):
            raise ConfigurationError(
                f"{path}: dropout must be in [0, 1), got {self.dropout}"
            )

        needs_size = self.kind not in ("concat", "wrapper", "ensemble") or (
            self.kind == "ensemble" and self.merge in ("affine", "concat_feedforward")
        )
        if needs_size and self.encoding_size <= 0:
            raise ConfigurationError(
                f"{path}: encoding_size must be positive for kind '{self.kind}', "
                f"got {self.encoding_size}"
            )

        if self.kind in ("chars_birnn", "chars_attention"):
            if self.cell not in ("lstm", "gru"):
                raise ConfigurationError(
                    f"{path}: cell must be 'lstm' or 'gru', got '{self.cell}'"
                )
            if min(self.char_embedding_size, self.hidden_size, self.attention_size) <= 0:
                raise ConfigurationError(
                    f"{path}: char_embedding_size, hidden_size and attention_size "
                    f"must be positive"
                )
        elif self.kind == "transformer":
            if self.n_heads <= 0 or self.encoding_size % self.n_heads != 0:
                raise ConfigurationError(
                    f"{path}: encoding_size ({self.encoding_size}) must be "
                    f"divisible by n_heads ({self.n_heads})"
                )
        elif self.kind in ("reduction", "wrapper"):
            if self.input is None:
                raise ConfigurationError(f"{path}: kind '{self.kind}' needs an input encoder")
            if self.kind == "wrapper" and self.converter not in CONVERTER_NAMES:
                raise ConfigurationError(
                    f"{path}: unknown converter '{self.converter}'. "
                    f"Choose from: {list(CONVERTER_NAMES)}"
                )
            self.input.validate(f"{path}.input")
        elif self.kind in COMPOSITE_KINDS:
            if not self.components:
                raise ConfigurationError(
                    f"{path}: kind '{self.kind}' needs at least one component"
                )
            if self.kind == "ensemble" and self.merge not in MERGE_NAMES:
                raise ConfigurationError(
                    f"{path}: unknown merge '{self.merge}'. Choose from: {list(MERGE_NAMES)}"
                )
            for i, component in enumerate(self.components):
                if self.kind != "ensemble" and not component.trainable:
                    raise ConfigurationError(
                        f"{path}.components[{i}]: trainable=False is only supported "
                        f"under an 'ensemble', kind '{self.kind}' trains every component"
                    )
                component.validate(f"{path}.components[{i}]")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EncoderConfig:
        """Build a node (and its children) from nested dictionaries."""
        raw = dict(raw)
        components = [cls.from_dict(c) for c in raw.pop("components", None) or []]
        input_raw = raw.pop("input", None)
        try:
            return cls(
                components=components,
                input=cls.from_dict(input_raw) if input_raw is not None else None,
                **raw,
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid encoder configuration: {e}") from e


# =============================================================================
# Training Configuration
# =============================================================================

@dataclass
class TrainingConfig:
    """
    Parameters
    ----------
    update_method : UpdateMethod
        Update rule shared by every optimizer of the encoder tree.

    epochs : int
        Passes over the training sentences.

    batch_size : int
        Sentences per optimizer update.

    seed : int
        Random seed for shuffling, dropout and initialization.

    log_every : int
        Log the running loss every N batches (0 disables).

    use_dropout : bool
        Whether training encoders apply dropout.

    progress_bar : bool
        Whether to show a tqdm progress bar.
    """
    update_method: UpdateMethod = field(default_factory=UpdateMethod)
    epochs: int = 1
    batch_size: int = 8
    seed: int = 42
    log_every: int = 50
    use_dropout: bool = True
    progress_bar: bool = True

    def validate(self) -> None:
        self.update_method.validate()
        if self.epochs <= 0:
            raise ConfigurationError(f"epochs must be positive, got {self.epochs}")
        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.log_every < 0:
            raise ConfigurationError(f"log_every must be non-negative, got {self.log_every}")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TrainingConfig:
        raw = dict(raw)
        update_method = UpdateMethod(**raw.pop("update_method", {}))
        return cls(update_method=update_method, **raw)


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class TokensEncoderConfig:
    """
    Master configuration: the encoder tree plus its training settings.

    Usage:
        >>> config = TokensEncoderConfig.from_yaml("configs/default.yaml")
        >>> config.encoder.kind     # "concat"
        >>> config.training.epochs  # 5
    """
    encoder: EncoderConfig = field(
        default_factory=lambda: EncoderConfig(kind="embeddings", encoding_size=32)
    )
    training: TrainingConfig = field(default_factory=TrainingConfig)

    def validate(self) -> None:
        """
        Validate the whole configuration.

        Raises
        ------
        ConfigurationError
            If any node or setting is invalid.
        """
        self.encoder.validate()
        self.training.validate()

        logger.info(
            f"Config validated: {self.encoder.kind} encoder, "
            f"{self.training.update_method.name} "
            f"lr={self.training.update_method.learning_rate}"
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> TokensEncoderConfig:
        """
        Load and validate a configuration from a YAML file.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ConfigurationError
            If the file is empty or describes an invalid configuration.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ConfigurationError(f"Config file is empty: {path}")

        config = cls.from_dict(raw)
        config.validate()
        logger.info(f"Config loaded from {path}")
        return config

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TokensEncoderConfig:
        try:
            return cls(
                encoder=EncoderConfig.from_dict(raw.get("encoder", {})),
                training=TrainingConfig.from_dict(raw.get("training", {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def to_yaml(self, path: str | Path) -> None:
        """Save the configuration to a YAML file, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.to_dict(),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls) -> TokensEncoderConfig:
        """
        A tiny configuration exercising a composite of several kinds,
        fast enough for unit tests.
        """
        vocabulary = ["the", "cat", "sat", "on", "mat"]
        return cls(
            encoder=EncoderConfig(
                kind="ensemble",
                merge="affine",
                encoding_size=8,
                activation="tanh",
                components=[
                    EncoderConfig(kind="embeddings", encoding_size=6, vocabulary=vocabulary),
                    EncoderConfig(
                        kind="chars_birnn",
                        encoding_size=4,
                        alphabet="abcdefghijklmnopqrstuvwxyz",
                        char_embedding_size=4,
                        hidden_size=4,
                    ),
                    EncoderConfig(
                        kind="embeddings",
                        encoding_size=6,
                        vocabulary=vocabulary,
                        trainable=False,
                    ),
                ],
            ),
            training=TrainingConfig(
                update_method=UpdateMethod(name="sgd", learning_rate=0.1),
                epochs=1,
                batch_size=2,
                seed=0,
                log_every=0,
                use_dropout=False,
                progress_bar=False,
            ),
        )

    def __repr__(self) -> str:
        """Pretty-print the configuration."""
        lines = [
            "TokensEncoderConfig(",
            f"  Encoder:  {_describe(self.encoder)}",
            f"  Training: {self.training.update_method.name} "
            f"lr={self.training.update_method.learning_rate}, "
            f"batch_size={self.training.batch_size}, "
            f"epochs={self.training.epochs}",
            ")",
        ]
        return "\n".join(lines)


def _describe(node: EncoderConfig) -> str:
    if node.components:
        inner = ", ".join(_describe(c) for c in node.components)
        return f"{node.kind}[{inner}]"
    if node.input is not None:
        return f"{node.kind}({_describe(node.input)})"
    return f"{node.kind}:{node.encoding_size}"

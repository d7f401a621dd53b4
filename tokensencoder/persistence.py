"""
Parameters Persistence
======================
Save and load the parameter values of a model tree. The model structure
itself is rebuilt from its configuration (see builder.py); only tensors
are stored.

Supports both safetensors (.safetensors) and PyTorch (.pt) formats.

Usage:
    >>> save_parameters(model, "outputs/encoder.safetensors")
    >>> model = build_model(config.encoder)
    >>> load_parameters(model, "outputs/encoder.safetensors")
"""

from __future__ import annotations

import logging
from pathlib import Path

import torch
import torch.nn as nn
from safetensors.torch import load_file, save_file

logger = logging.getLogger(__name__)


def save_parameters(model: nn.Module, path: str | Path) -> None:
    """
    Save every parameter and buffer of ``model``.

    Tensors are cloned so that parameters shared by several sub-models
    are stored once per key.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    state_dict = {k: v.detach().cpu().contiguous().clone() for k, v in model.state_dict().items()}

    if path.suffix == ".safetensors":
        save_file(state_dict, str(path))
    else:
        torch.save({"model_state_dict": state_dict}, path)

    logger.info(f"Saved {len(state_dict)} tensors to {path}")


def load_parameters(model: nn.Module, path: str | Path) -> None:
    """
    Load parameter values saved by ``save_parameters``.

    Raises
    ------
    FileNotFoundError
        If the file doesn't exist.
    RuntimeError
        If a stored tensor does not match the shape of its parameter.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parameters file not found: {path}")

    if path.suffix == ".safetensors":
        state_dict = load_file(str(path), device="cpu")
    else:
        state_dict = torch.load(path, map_location="cpu", weights_only=True)
        if "model_state_dict" in state_dict:
            state_dict = state_dict["model_state_dict"]

    missing, unexpected = model.load_state_dict(state_dict, strict=False)
    if missing:
        logger.warning(f"Missing keys in {path}: {missing}")
    if unexpected:
        logger.warning(f"Unexpected keys in {path}: {unexpected}")

    logger.info(f"Parameters loaded from {path}")

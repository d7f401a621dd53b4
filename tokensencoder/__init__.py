"""
tokensencoder
=============
Composable encoders that turn the tokens of a sentence into dense
vectors, built to be plugged into larger trainable NLP pipelines.

Every encoder follows the same explicit protocol:

    vectors = encoder.forward(sentence)        # one vector per token
    encoder.backward(errors)                   # one error per vector
    optimizer.accumulate(encoder.get_params_errors())
    optimizer.update()

Encoders are built from models: leaf kinds (embeddings, characters,
transformer, morphology) and compositions of other models
(concatenation, affine and feed-forward merges, weighted ensembles,
reduction, wrapper).

Quick Start:
    >>> from tokensencoder.config import TokensEncoderConfig
    >>> from tokensencoder.builder import build_model
    >>> config = TokensEncoderConfig.from_yaml("configs/default.yaml")
    >>> model = build_model(config.encoder)
    >>> encoder = model.build_encoder()

Subpackages:
    - tokensencoder.core      — protocol runtime, pool, accumulator, leaf layers
    - tokensencoder.data      — sentences, dictionaries, key/feature extractors
    - tokensencoder.optim     — update rules
    - tokensencoder.encoders  — encoder kinds, factory and encoders pool
    - tokensencoder.ensemble  — composite encoders and merges
    - tokensencoder.training  — training loop
"""

__version__ = "0.1.0"

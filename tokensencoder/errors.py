"""
tokensencoder Errors
====================
Exception hierarchy shared by every component of the package.

Two families of failure exist, and neither is recovered locally:

    - ConfigurationError: a model, merge or configuration file describes
      something that cannot be built (unknown kind, width mismatch, zero
      branches, ...). Raised at construction time.
    - ProtocolError: the forward / backward / params-errors life cycle of
      an encoder, a pool or an optimizer was violated at run time.

Both derive from the builtin exception a caller would naturally catch
(ValueError and RuntimeError respectively), so code written against
plain Python exceptions keeps working.
"""

from __future__ import annotations


class TokensEncoderError(Exception):
    """Base class of every error raised by tokensencoder."""


class ConfigurationError(TokensEncoderError, ValueError):
    """An invalid model or configuration was requested."""


class ProtocolError(TokensEncoderError, RuntimeError):
    """A component was used out of order or with mismatching data."""

#!/usr/bin/env python3
"""
Tests for the tokensencoder protocol runtime, leaf encoders,
configuration and persistence.

Run all tests:
    python -m pytest tests/ -v --tb=short

Run a specific test file:
    python -m pytest tests/test_tokensencoder.py -v
"""

import sys
from pathlib import Path

import pytest
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def _embeddings_model(size=4, vocabulary=("a", "b", "c"), **kwargs):
    from tokensencoder.core.embeddings import EmbeddingsMap
    from tokensencoder.encoders.embeddings import EmbeddingsEncoderModel
    return EmbeddingsEncoderModel(EmbeddingsMap(size, keys=vocabulary), **kwargs)


def _sentence(*forms):
    from tokensencoder.data.sentence import Sentence
    return Sentence.from_forms(list(forms))


# =============================================================================
# Accumulator Tests
# =============================================================================

class TestAccumulator:
    """Tests for ParamsErrorsAccumulator."""

    def test_sum_and_average(self):
        """Three contributions 2, 4, 6 sum to 12 and average to 4."""
        from tokensencoder.core.accumulator import ParamsErrorsAccumulator
        param = torch.nn.Parameter(torch.zeros(3))
        acc = ParamsErrorsAccumulator()
        acc.reset()
        for value in (2.0, 4.0, 6.0):
            acc.accumulate(param, torch.full((3,), value))

        summed = acc.get_params_errors()
        assert len(summed) == 1
        assert summed[0].owner is param
        assert torch.equal(summed[0].values, torch.full((3,), 12.0))

        acc.average_errors()
        assert torch.equal(acc.get_params_errors()[0].values, torch.full((3,), 4.0))

    def test_owners_kept_separate(self):
        """Equal-valued parameters are different owners."""
        from tokensencoder.core.accumulator import ParamsErrorsAccumulator
        p1 = torch.nn.Parameter(torch.zeros(2))
        p2 = torch.nn.Parameter(torch.zeros(2))
        acc = ParamsErrorsAccumulator()
        acc.accumulate(p1, torch.ones(2))
        acc.accumulate(p2, torch.ones(2))
        assert len(acc.get_params_errors()) == 2

    def test_query_before_use_raises(self):
        """An accumulator never reset nor fed cannot be queried."""
        from tokensencoder.core.accumulator import ParamsErrorsAccumulator
        from tokensencoder.errors import ProtocolError
        acc = ParamsErrorsAccumulator()
        with pytest.raises(ProtocolError):
            acc.get_params_errors()
        with pytest.raises(ProtocolError):
            acc.average_errors()

    def test_copy_false_does_not_mutate_input(self):
        """Later contributions never modify a tensor stored by reference."""
        from tokensencoder.core.accumulator import ParamsErrorsAccumulator
        param = torch.nn.Parameter(torch.zeros(2))
        first = torch.ones(2)
        acc = ParamsErrorsAccumulator()
        acc.accumulate(param, first, copy=False)
        acc.accumulate(param, torch.ones(2), copy=False)
        assert torch.equal(first, torch.ones(2))
        assert torch.equal(acc.get_params_errors()[0].values, torch.full((2,), 2.0))

    def test_shape_mismatch(self):
        from tokensencoder.core.accumulator import ParamsErrorsAccumulator
        from tokensencoder.errors import ProtocolError
        acc = ParamsErrorsAccumulator()
        with pytest.raises(ProtocolError, match="shape"):
            acc.accumulate(torch.nn.Parameter(torch.zeros(3)), torch.zeros(4))


# =============================================================================
# Pool Tests
# =============================================================================

class TestPool:
    """Tests for ItemsPool and TokensEncodersPool."""

    def test_ids_are_dense_and_reused(self):
        """Ids 0..n-1 are issued, and release_all gives the same objects back."""
        from tokensencoder.encoders.pool import TokensEncodersPool
        pool = TokensEncodersPool(_embeddings_model())

        first = pool.get_encoders(3)
        assert [e.id for e in first] == [0, 1, 2]

        second = pool.get_encoders(2)
        assert [e.id for e in second] == [0, 1]
        assert second[0] is first[0]
        assert second[1] is first[1]
        assert pool.size == 3

    def test_get_item_lowest_free_id(self):
        from tokensencoder.core.pool import ItemsPool

        class Item:
            def __init__(self, id):
                self.id = id

        pool = ItemsPool(Item)
        a, b = pool.get_item(), pool.get_item()
        pool.release_all()
        assert pool.get_item() is a
        assert pool.get_item() is b
        assert pool.get_item().id == 2

    def test_stale_item_detected(self):
        """An item released and not re-acquired is stale."""
        from tokensencoder.core.pool import ItemsPool
        from tokensencoder.errors import ProtocolError

        class Item:
            def __init__(self, id):
                self.id = id

        pool = ItemsPool(Item)
        item = pool.get_item()
        pool.check_current(item)

        pool.release_all()
        assert pool.is_stale(item)
        with pytest.raises(ProtocolError, match="released"):
            pool.check_current(item)

        assert pool.get_item() is item
        assert not pool.is_stale(item)

    def test_released_encoder_is_stale(self):
        """Reads through an encoder released by its pool raise until it is forwarded again."""
        from tokensencoder.encoders.pool import TokensEncodersPool
        from tokensencoder.errors import ProtocolError
        pool = TokensEncodersPool(_embeddings_model())

        encoder = pool.get_encoders(2)[1]
        encoder.forward(_sentence("a"))
        encoder.backward([torch.ones(4)])
        assert len(encoder.get_params_errors()) == 1

        pool.release_all()
        assert pool.is_stale(encoder)
        with pytest.raises(ProtocolError, match="stale"):
            encoder.get_params_errors()
        with pytest.raises(ProtocolError, match="released"):
            encoder.forward(_sentence("b"))

        # Acquired again but not forwarded: the old cycle is still unreadable
        assert pool.get_encoders(2)[1] is encoder
        with pytest.raises(ProtocolError, match="stale"):
            encoder.get_params_errors()
        with pytest.raises(ProtocolError, match="stale"):
            encoder.backward([torch.ones(4)])

        encoder.forward(_sentence("b"))
        encoder.backward([torch.ones(4)])
        assert len(encoder.get_params_errors()) == 1

    def test_reused_encoder_forgets_previous_cycle(self):
        """A reused slot only reflects the sentence of its current cycle."""
        from tokensencoder.encoders.pool import TokensEncodersPool
        model = _embeddings_model()
        pool = TokensEncodersPool(model)

        encoder = pool.get_encoders(1)[0]
        encoder.forward(_sentence("a", "b", "c"))
        encoder.backward([torch.ones(4)] * 3)

        assert pool.get_encoders(1)[0] is encoder
        out = encoder.forward(_sentence("b"))
        assert len(out) == 1
        assert torch.equal(out[0], model.embeddings.get("b").detach())

        encoder.backward([torch.full((4,), 2.0)])
        errors = encoder.get_params_errors()
        assert len(errors) == 1
        assert torch.equal(errors.get(model.embeddings.get("b")), torch.full((4,), 2.0))
        assert errors.get(model.embeddings.get("a")) is None

    def test_shrink(self):
        from tokensencoder.core.pool import ItemsPool
        from tokensencoder.errors import ProtocolError

        class Item:
            def __init__(self, id):
                self.id = id

        pool = ItemsPool(Item)
        pool.get_items(4)
        with pytest.raises(ProtocolError, match="still in use"):
            pool.shrink(2)

        pool.release_all()
        pool.shrink(2)
        assert pool.size == 2
        assert [i.id for i in pool.get_items(3)] == [0, 1, 2]


# =============================================================================
# Protocol Tests
# =============================================================================

class TestProtocol:
    """Life-cycle violations raise ProtocolError."""

    def test_backward_before_forward(self):
        from tokensencoder.errors import ProtocolError
        encoder = _embeddings_model().build_encoder()
        with pytest.raises(ProtocolError, match="before forward"):
            encoder.backward([torch.zeros(4)])

    def test_double_backward(self):
        from tokensencoder.errors import ProtocolError
        encoder = _embeddings_model().build_encoder()
        encoder.forward(_sentence("a"))
        encoder.backward([torch.zeros(4)])
        with pytest.raises(ProtocolError, match="twice"):
            encoder.backward([torch.zeros(4)])

    def test_errors_count_mismatch(self):
        from tokensencoder.errors import ProtocolError
        encoder = _embeddings_model().build_encoder()
        encoder.forward(_sentence("a", "b"))
        with pytest.raises(ProtocolError, match="expected 2"):
            encoder.backward([torch.zeros(4)])

    def test_errors_width_mismatch(self):
        from tokensencoder.errors import ProtocolError
        encoder = _embeddings_model().build_encoder()
        encoder.forward(_sentence("a"))
        with pytest.raises(ProtocolError, match="shape"):
            encoder.backward([torch.zeros(5)])

    def test_params_errors_before_backward(self):
        from tokensencoder.errors import ProtocolError
        encoder = _embeddings_model().build_encoder()
        encoder.forward(_sentence("a"))
        with pytest.raises(ProtocolError, match="before backward"):
            encoder.get_params_errors()

    def test_input_errors_without_propagation(self):
        from tokensencoder.errors import ProtocolError
        encoder = _embeddings_model().build_encoder()
        encoder.forward(_sentence("a"))
        encoder.backward([torch.zeros(4)])
        with pytest.raises(ProtocolError, match="propagate"):
            encoder.get_input_errors()

    def test_rejected_forward_blocks_backward(self):
        """A forward that fails the token count check leaves nothing to backward."""
        from tokensencoder.data.sentence import Sentence
        from tokensencoder.encoders.wrapper import TokensEncoderWrapperModel
        from tokensencoder.errors import ProtocolError

        def drop_last(sentence):
            return Sentence(tokens=list(sentence.tokens)[:-1])

        encoder = TokensEncoderWrapperModel(_embeddings_model(), converter=drop_last).build_encoder()
        with pytest.raises(ProtocolError, match="produced 1 vectors for 2 tokens"):
            encoder.forward(_sentence("a", "b"))
        with pytest.raises(ProtocolError, match="before forward"):
            encoder.backward([torch.zeros(4), torch.zeros(4)])

    def test_new_cycle_after_backward(self):
        """A recycled encoder accepts a new forward/backward cycle."""
        encoder = _embeddings_model().build_encoder()
        for forms in (("a",), ("b", "c")):
            encoder.forward(_sentence(*forms))
            encoder.backward([torch.zeros(4)] * len(forms))
            assert len(encoder.get_params_errors()) == len(forms)


# =============================================================================
# Leaf Layers Tests
# =============================================================================

class TestLayers:
    """Gradients of the feed-forward and affine leaf layers."""

    def test_feedforward_gradients(self):
        """Identity layer: dW = e·xᵀ, db = e, dx = Wᵀ·e."""
        from tokensencoder.core.layers import FeedforwardLayer, LinearParams
        params = LinearParams(3, 2)
        layer = FeedforwardLayer(params, activation=None, propagate_to_input=True)

        x = torch.tensor([1.0, 2.0, 3.0])
        out = layer.forward([x])
        assert torch.allclose(out[0], params.weight.detach() @ x + params.bias.detach())

        e = torch.tensor([0.5, -1.0])
        layer.backward([e])
        errors = layer.get_params_errors()
        assert torch.allclose(errors.get(params.weight), torch.outer(e, x))
        assert torch.allclose(errors.get(params.bias), e)
        assert torch.allclose(layer.get_input_errors()[0], params.weight.detach().T @ e)

    def test_sparse_feedforward(self):
        """Sparse-binary input only touches the columns of active features."""
        from tokensencoder.core.layers import FeedforwardLayer, LinearParams
        params = LinearParams(5, 2)
        layer = FeedforwardLayer(params, sparse=True)
        out = layer.forward([[0, 3]])
        expected = params.weight.detach()[:, 0] + params.weight.detach()[:, 3] + params.bias.detach()
        assert torch.allclose(out[0], expected)

        layer.backward([torch.ones(2)])
        grad = layer.get_params_errors().get(params.weight)
        assert torch.equal(grad[:, [1, 2, 4]], torch.zeros(2, 3))
        assert torch.equal(grad[:, [0, 3]], torch.ones(2, 2))

    def test_affine_input_errors(self):
        from tokensencoder.core.layers import AffineLayer, AffineParams
        params = AffineParams([2, 3], 4)
        layer = AffineLayer(params, propagate_to_input=True)
        layer.forward([[torch.ones(2)], [torch.ones(3)]])
        e = torch.arange(4.0)
        layer.backward([e])

        input_errors = layer.get_input_errors()
        assert len(input_errors) == 2
        assert torch.allclose(input_errors[0][0], params.weights[0].detach().T @ e)
        assert torch.allclose(input_errors[1][0], params.weights[1].detach().T @ e)

    def test_unknown_activation(self):
        from tokensencoder.core.layers import get_activation
        from tokensencoder.errors import ConfigurationError
        with pytest.raises(ConfigurationError, match="activation"):
            get_activation("swish3")


# =============================================================================
# Embeddings Encoder Tests
# =============================================================================

class TestEmbeddingsEncoder:
    """Tests for the embeddings encoder."""

    def test_forward_returns_embeddings(self):
        model = _embeddings_model()
        out = model.build_encoder().forward(_sentence("a", "zzz"))
        assert torch.equal(out[0], model.embeddings.get("a").detach())
        assert torch.equal(out[1], model.embeddings.unknown.detach())

    def test_key_extractor_fallback(self):
        """The first extracted key present in the map is used."""
        from tokensencoder.data.features import NormWordKeyExtractor, WordKeyExtractor
        model = _embeddings_model(
            vocabulary=("cat", "00"),
            key_extractors=[WordKeyExtractor(), NormWordKeyExtractor()],
        )
        out = model.build_encoder().forward(_sentence("Cat", "42"))
        assert torch.equal(out[0], model.embeddings.get("cat").detach())
        assert torch.equal(out[1], model.embeddings.get("00").detach())

    def test_repeated_key_errors_are_averaged(self):
        model = _embeddings_model()
        encoder = model.build_encoder()
        encoder.forward(_sentence("a", "b", "a"))
        encoder.backward([torch.full((4,), 2.0), torch.ones(4), torch.full((4,), 4.0)])

        errors = encoder.get_params_errors()
        assert len(errors) == 2
        assert torch.equal(errors.get(model.embeddings.get("a")), torch.full((4,), 3.0))
        assert torch.equal(errors.get(model.embeddings.get("b")), torch.ones(4))

    def test_frequency_dropout_of_unseen_key(self):
        """A key with zero occurrences is always dropped: α / (0 + α) = 1."""
        from tokensencoder.data.dictionary import FrequencyDictionary
        model = _embeddings_model(
            dropout=0.25,
            frequency_dictionary=FrequencyDictionary({"b": 1000}),
        )
        out = model.build_encoder(use_dropout=True).forward(_sentence("a"))
        assert torch.equal(out[0], model.embeddings.unknown.detach())

    def test_no_dropout_at_inference(self):
        model = _embeddings_model(dropout=0.9)
        out = model.build_encoder(use_dropout=False).forward(_sentence("a"))
        assert torch.equal(out[0], model.embeddings.get("a").detach())

    def test_empty_sentence(self):
        encoder = _embeddings_model().build_encoder()
        assert encoder.forward(_sentence()) == []
        encoder.backward([])
        assert len(encoder.get_params_errors()) == 0


# =============================================================================
# Other Leaf Encoders Tests
# =============================================================================

class TestLeafEncoders:
    """Tests for the chars, transformer, morpho, reduction and wrapper kinds."""

    @pytest.mark.parametrize("kind", ["birnn", "attention"])
    @pytest.mark.parametrize("cell", ["lstm", "gru"])
    def test_chars_encoder(self, kind, cell):
        from tokensencoder.encoders.chars import CharsAttentionEncoderModel, CharsBiRNNEncoderModel
        cls = CharsBiRNNEncoderModel if kind == "birnn" else CharsAttentionEncoderModel
        torch.manual_seed(0)
        model = cls(alphabet="acdgot", char_embedding_size=3, hidden_size=4, encoding_size=5, cell=cell)
        encoder = model.build_encoder()

        out = encoder.forward(_sentence("cat", "dog", ""))
        assert len(out) == 3
        assert all(v.shape == (5,) for v in out)

        encoder.backward([torch.ones(5)] * 3)
        errors = encoder.get_params_errors()
        chars = model.network.char_embeddings
        assert errors.get(chars.get("c")) is not None
        assert errors.get(chars.get("o")) is not None
        assert errors.get(chars.unknown) is not None
        assert errors.get(model.network.output.weight) is not None

    def test_chars_encoder_is_deterministic(self):
        from tokensencoder.encoders.chars import CharsBiRNNEncoderModel
        model = CharsBiRNNEncoderModel(alphabet="cat", char_embedding_size=3, hidden_size=4, encoding_size=5)
        first = model.build_encoder(id=0).forward(_sentence("cat"))
        second = model.build_encoder(id=1).forward(_sentence("cat"))
        assert torch.allclose(first[0], second[0])

    def test_transformer_frozen(self):
        from tokensencoder.encoders.transformer import TransformerBackbone, TransformerEncoderModel
        backbone = TransformerBackbone(["the", "cat"], d_model=8, n_heads=2, n_layers=1, ff_size=16)
        model = TransformerEncoderModel(backbone, fine_tuning=False)
        encoder = model.build_encoder()
        out = encoder.forward(_sentence("the", "cat"))
        assert [v.shape for v in out] == [(8,), (8,)]

        encoder.backward([torch.ones(8), torch.ones(8)])
        assert len(encoder.get_params_errors()) == 0

    def test_transformer_fine_tuning_and_input_errors(self):
        from tokensencoder.encoders.transformer import TransformerBackbone, TransformerEncoderModel
        backbone = TransformerBackbone(["the", "cat"], d_model=8, n_heads=2, n_layers=1, ff_size=16)
        model = TransformerEncoderModel(backbone, fine_tuning=True, propagate_to_input=True)
        encoder = model.build_encoder()
        encoder.forward(_sentence("the", "cat", "the"))
        encoder.backward([torch.ones(8)] * 3)

        errors = encoder.get_params_errors()
        assert errors.get(backbone.positions) is not None
        assert errors.get(backbone.embeddings.get("the")) is not None

        input_errors = encoder.get_input_errors()
        assert len(input_errors) == 3
        assert input_errors[0].shape == (8,)

    def test_transformer_max_length(self):
        from tokensencoder.encoders.transformer import TransformerBackbone, TransformerEncoderModel
        from tokensencoder.errors import ProtocolError
        backbone = TransformerBackbone([], d_model=4, n_heads=2, n_layers=1, ff_size=8, max_length=2)
        encoder = TransformerEncoderModel(backbone).build_encoder()
        with pytest.raises(ProtocolError, match="max_length"):
            encoder.forward(_sentence("a", "b", "c"))

    def test_morpho_encoder(self):
        from tokensencoder.data.dictionary import FeaturesDictionary
        from tokensencoder.data.features import UNKNOWN_FEATURE
        from tokensencoder.data.sentence import MorphoToken, Sentence
        from tokensencoder.encoders.morpho import MorphoEncoderModel

        dictionary = FeaturesDictionary([UNKNOWN_FEATURE, "i:0 p:NOUN", "i:0 p:NOUN number:s"])
        model = MorphoEncoderModel(dictionary, encoding_size=3, activation=None)
        sentence = Sentence([
            MorphoToken("cat", [[{"pos": "NOUN", "number": "s"}]]),
            MorphoToken("xyz"),
        ])
        encoder = model.build_encoder()
        out = encoder.forward(sentence)

        w = model.dense.weight.detach()
        b = model.dense.bias.detach()
        assert torch.allclose(out[0], w[:, 1] + w[:, 2] + b)
        assert torch.allclose(out[1], w[:, 0] + b)

        encoder.backward([torch.ones(3), torch.ones(3)])
        assert len(encoder.get_params_errors()) == 2

    def test_reduction_optimize_input(self):
        from tokensencoder.core.params import ParamsErrorsList, ReductionParams
        from tokensencoder.encoders.reduction import ReductionEncoderModel
        from tokensencoder.optim.update import UpdateMethod

        for optimize_input in (True, False):
            model = ReductionEncoderModel(_embeddings_model(), encoding_size=2, optimize_input=optimize_input)
            encoder = model.build_encoder()
            out = encoder.forward(_sentence("a", "b"))
            assert [v.shape for v in out] == [(2,), (2,)]
            encoder.backward([torch.ones(2), torch.ones(2)])

            params = encoder.get_params_errors()
            assert isinstance(params, ReductionParams)
            assert isinstance(params.reduction, ParamsErrorsList)
            optimizer = model.build_optimizer(UpdateMethod(name="sgd", learning_rate=0.1))
            if optimize_input:
                assert isinstance(params.input, ParamsErrorsList)
                assert optimizer.input_optimizer is not None
            else:
                assert params.input is None
                assert optimizer.input_optimizer is None
            optimizer.accumulate(params)
            optimizer.update()

    def test_wrapper_delegates(self):
        from tokensencoder.encoders.wrapper import MirrorConverter, TokensEncoderWrapperModel
        inner = _embeddings_model()
        model = TokensEncoderWrapperModel(inner, converter=MirrorConverter())
        assert model.encoding_size == inner.encoding_size

        out = model.build_encoder().forward(_sentence("b"))
        assert torch.equal(out[0], inner.embeddings.get("b").detach())


# =============================================================================
# Factory Tests
# =============================================================================

class TestFactory:
    """Tests for the kind dispatch."""

    def test_every_kind_registered(self):
        from tokensencoder.encoders.base import ModelKind
        from tokensencoder.encoders.factory import REGISTRY
        assert set(REGISTRY) == set(ModelKind)

    def test_unknown_kind(self):
        from tokensencoder.encoders.base import TokensEncoderModel
        from tokensencoder.encoders.factory import build_encoder, build_optimizer
        from tokensencoder.errors import ConfigurationError
        from tokensencoder.optim.update import UpdateMethod

        class Unregistered(TokensEncoderModel):
            kind = "mystery"

        model = Unregistered(encoding_size=3)
        with pytest.raises(ConfigurationError, match="Unsupported"):
            build_encoder(model)
        with pytest.raises(ConfigurationError, match="Unsupported"):
            build_optimizer(model, UpdateMethod())

    def test_kind_class_mismatch(self):
        from tokensencoder.encoders.base import ModelKind, TokensEncoderModel
        from tokensencoder.errors import ConfigurationError

        class Impostor(TokensEncoderModel):
            kind = ModelKind.EMBEDDINGS

        with pytest.raises(ConfigurationError, match="not a EmbeddingsEncoderModel"):
            Impostor(encoding_size=3).build_encoder()

    def test_non_positive_encoding_size(self):
        from tokensencoder.core.embeddings import EmbeddingsMap
        from tokensencoder.errors import ConfigurationError
        with pytest.raises(ConfigurationError):
            EmbeddingsMap(0)


# =============================================================================
# Optimizer Tests
# =============================================================================

class TestOptimizer:
    """Tests for update rules and leaf optimizers."""

    def test_sgd_sums_encoders(self):
        """Errors of two encoders are summed before one update."""
        from tokensencoder.encoders.pool import TokensEncodersPool
        from tokensencoder.optim.update import UpdateMethod
        model = _embeddings_model()
        before = model.embeddings.get("a").detach().clone()
        optimizer = model.build_optimizer(UpdateMethod(name="sgd", learning_rate=0.1))

        for encoder in TokensEncodersPool(model).get_encoders(2):
            encoder.forward(_sentence("a"))
            encoder.backward([torch.ones(4)])
            optimizer.accumulate(encoder.get_params_errors(copy=False), copy=False)
        optimizer.update()

        after = model.embeddings.get("a").detach()
        assert torch.allclose(after, before - 0.2)

    def test_update_without_errors_is_noop(self):
        from tokensencoder.optim.update import UpdateMethod
        model = _embeddings_model()
        before = model.embeddings.get("a").detach().clone()
        model.build_optimizer(UpdateMethod(name="adam")).update()
        assert torch.equal(model.embeddings.get("a").detach(), before)

    def test_foreign_parameter_rejected(self):
        from tokensencoder.core.params import ParamsErrorsList
        from tokensencoder.errors import ProtocolError
        from tokensencoder.optim.update import UpdateMethod
        optimizer = _embeddings_model().build_optimizer(UpdateMethod())
        errors = ParamsErrorsList()
        errors.append(torch.nn.Parameter(torch.zeros(4)), torch.ones(4))
        with pytest.raises(ProtocolError, match="not handled"):
            optimizer.accumulate(errors)

    def test_invalid_update_method(self):
        from tokensencoder.optim.update import UpdateMethod
        with pytest.raises(ValueError, match="Unknown update method"):
            UpdateMethod(name="rmsprop").validate()
        with pytest.raises(ValueError, match="learning_rate"):
            UpdateMethod(learning_rate=0.0).validate()


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system and the model builder."""

    def test_smoke_test_config(self):
        from tokensencoder.builder import build_model
        from tokensencoder.config import TokensEncoderConfig
        config = TokensEncoderConfig.for_smoke_test()
        config.validate()
        model = build_model(config.encoder)
        assert model.encoding_size == 8
        assert model.trainable == [True, True, False]

    def test_default_yaml_loads(self):
        from tokensencoder.builder import build_model
        from tokensencoder.config import TokensEncoderConfig
        path = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"
        config = TokensEncoderConfig.from_yaml(path)
        assert "on" in config.encoder.components[0].vocabulary
        assert build_model(config.encoder).encoding_size == 75

    def test_yaml_round_trip(self, tmp_path):
        from tokensencoder.config import TokensEncoderConfig
        config = TokensEncoderConfig.for_smoke_test()
        path = tmp_path / "encoder.yaml"
        config.to_yaml(path)

        loaded = TokensEncoderConfig.from_yaml(path)
        assert loaded.to_dict() == config.to_dict()
        assert loaded.encoder.components[2].trainable is False

    def test_unknown_kind(self):
        from tokensencoder.config import EncoderConfig
        with pytest.raises(ValueError, match="unknown kind"):
            EncoderConfig(kind="bert2").validate()

    def test_nested_error_names_path(self):
        from tokensencoder.config import EncoderConfig
        config = EncoderConfig(
            kind="concat",
            components=[
                EncoderConfig(kind="embeddings", encoding_size=4),
                EncoderConfig(kind="transformer", encoding_size=5, n_heads=2),
            ],
        )
        with pytest.raises(ValueError, match=r"encoder\.components\[1\]"):
            config.validate()

    def test_reduction_needs_input(self):
        from tokensencoder.config import EncoderConfig
        with pytest.raises(ValueError, match="input encoder"):
            EncoderConfig(kind="reduction", encoding_size=4).validate()

    def test_empty_composite(self):
        from tokensencoder.config import EncoderConfig
        with pytest.raises(ValueError, match="at least one component"):
            EncoderConfig(kind="ensemble", merge="sum").validate()

    @pytest.mark.parametrize("kind", ["concat", "affine", "feedforward"])
    def test_frozen_component_outside_ensemble_rejected(self, kind):
        from tokensencoder.builder import build_model
        from tokensencoder.config import EncoderConfig
        from tokensencoder.errors import ConfigurationError
        words = EncoderConfig(kind="embeddings", encoding_size=3, vocabulary=["a"])
        frozen = EncoderConfig(kind="embeddings", encoding_size=3, vocabulary=["a"], trainable=False)
        config = EncoderConfig(kind=kind, encoding_size=4, components=[words, frozen])
        with pytest.raises(ConfigurationError, match=r"components\[1\]: trainable=False"):
            build_model(config)

    def test_frozen_component_in_ensemble_kept(self):
        from tokensencoder.builder import build_model
        from tokensencoder.config import EncoderConfig
        words = EncoderConfig(kind="embeddings", encoding_size=3, vocabulary=["a"])
        frozen = EncoderConfig(kind="embeddings", encoding_size=3, vocabulary=["a"], trainable=False)
        config = EncoderConfig(kind="ensemble", merge="concat", components=[words, frozen])
        assert build_model(config).trainable == [True, False]

    def test_unknown_field(self):
        from tokensencoder.config import TokensEncoderConfig
        from tokensencoder.errors import ConfigurationError
        with pytest.raises(ConfigurationError):
            TokensEncoderConfig.from_dict({"encoder": {"kind": "embeddings", "colour": "red"}})

    def test_build_every_kind(self):
        """The builder produces the declared width for every kind."""
        from tokensencoder.builder import build_model
        from tokensencoder.config import EncoderConfig

        words = EncoderConfig(kind="embeddings", encoding_size=4, vocabulary=["a"])
        cases = [
            (words, 4),
            (EncoderConfig(kind="chars_birnn", encoding_size=3), 3),
            (EncoderConfig(kind="chars_attention", encoding_size=3, cell="gru"), 3),
            (EncoderConfig(kind="transformer", encoding_size=4, vocabulary=["a"]), 4),
            (EncoderConfig(kind="morpho", encoding_size=2, features=["i:0 p:NOUN"]), 2),
            (EncoderConfig(kind="reduction", encoding_size=2, input=words), 2),
            (EncoderConfig(kind="wrapper", input=words), 4),
            (EncoderConfig(kind="concat", components=[words, words]), 8),
            (EncoderConfig(kind="affine", encoding_size=5, components=[words, words]), 5),
            (EncoderConfig(kind="feedforward", encoding_size=6, components=[words]), 6),
            (EncoderConfig(kind="ensemble", merge="avg", components=[words, words]), 4),
        ]
        for config, size in cases:
            model = build_model(config)
            assert model.kind.value == config.kind
            assert model.encoding_size == size
            out = model.build_encoder().forward(_sentence("a", "b"))
            assert [v.shape for v in out] == [(size,), (size,)]


# =============================================================================
# Persistence Tests
# =============================================================================

class TestPersistence:
    """Tests for saving and loading parameter values."""

    @pytest.mark.parametrize("suffix", [".safetensors", ".pt"])
    def test_round_trip(self, tmp_path, suffix):
        from tokensencoder.builder import build_model
        from tokensencoder.config import TokensEncoderConfig
        from tokensencoder.persistence import load_parameters, save_parameters

        config = TokensEncoderConfig.for_smoke_test()
        torch.manual_seed(0)
        original = build_model(config.encoder)
        torch.manual_seed(1)
        restored = build_model(config.encoder)

        path = tmp_path / f"encoder{suffix}"
        save_parameters(original, path)
        load_parameters(restored, path)

        for (name, a), (_, b) in zip(original.state_dict().items(), restored.state_dict().items()):
            assert torch.equal(a, b), name

    def test_missing_file(self, tmp_path):
        from tokensencoder.persistence import load_parameters
        with pytest.raises(FileNotFoundError):
            load_parameters(_embeddings_model(), tmp_path / "nope.safetensors")

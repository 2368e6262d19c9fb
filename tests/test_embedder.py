"""
Embedder Tests - Verify the model lifecycle and embedding contract.

Tests:
- LOADING -> READY | PERMANENTLY_FAILED transitions
- Exponential backoff between load attempts
- Order and shape guarantees of embed()
- SentenceTransformerEmbedder batching (model mocked)
"""

from unittest.mock import patch

import numpy as np
import pytest

from fileseek.embedder import (
    ModelHandle, ModelState, SentenceTransformerEmbedder,
    deserialize_embedding, serialize_embedding,
)
from fileseek.errors import EmbeddingError, ModelUnavailableError


class FlakyLoader:
    """Fails a fixed number of times, then returns the embedder."""

    def __init__(self, embedder, failures: int):
        self.embedder = embedder
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")
        return self.embedder


class TestModelLifecycle:
    """Tests for ModelHandle state transitions."""

    def test_starts_loading(self, test_config, fake_embedder):
        handle = ModelHandle(lambda: fake_embedder, test_config)

        assert handle.state is ModelState.LOADING
        assert not handle.is_ready

    def test_ready_after_load(self, test_config, fake_embedder):
        handle = ModelHandle(lambda: fake_embedder, test_config)

        assert handle.load() is ModelState.READY
        assert handle.is_ready
        assert handle.attempts == 1

    def test_retries_with_exponential_backoff(self, test_config, fake_embedder):
        """Delays double between attempts."""
        test_config.model_max_attempts = 4
        test_config.model_backoff_base = 0.5
        delays = []
        loader = FlakyLoader(fake_embedder, failures=3)

        handle = ModelHandle(loader, test_config, sleep=delays.append)
        state = handle.load()

        assert state is ModelState.READY
        assert loader.calls == 4
        assert delays == [0.5, 1.0, 2.0]

    def test_backoff_is_capped(self, test_config, fake_embedder):
        test_config.model_max_attempts = 5
        test_config.model_backoff_base = 10.0
        test_config.model_backoff_max = 15.0
        delays = []

        handle = ModelHandle(FlakyLoader(fake_embedder, failures=4), test_config, sleep=delays.append)
        handle.load()

        assert delays == [10.0, 15.0, 15.0, 15.0]

    def test_permanently_failed_after_max_attempts(self, test_config):
        """Exhausting every attempt marks the model unavailable, no crash."""
        def broken():
            raise OSError("no model files")

        handle = ModelHandle(broken, test_config, sleep=lambda _: None)
        state = handle.load()

        assert state is ModelState.PERMANENTLY_FAILED
        assert handle.attempts == test_config.model_max_attempts
        assert isinstance(handle.last_error, OSError)
        assert handle.wait_until_ready(timeout=0) is False

    def test_dimension_mismatch_fails_without_retry(self, test_config, fake_embedder):
        test_config.dimension = fake_embedder.dimension + 1
        handle = ModelHandle(lambda: fake_embedder, test_config)

        assert handle.load() is ModelState.PERMANENTLY_FAILED
        assert handle.attempts == 1

    def test_background_start(self, test_config, fake_embedder):
        """start() loads on its own thread."""
        handle = ModelHandle(lambda: fake_embedder, test_config)
        handle.start()

        assert handle.wait_until_ready(timeout=5)
        assert handle.state is ModelState.READY


class TestEmbedContract:
    """Tests for ModelHandle.embed."""

    def test_not_ready_raises(self, test_config, fake_embedder):
        handle = ModelHandle(lambda: fake_embedder, test_config)

        with pytest.raises(ModelUnavailableError):
            handle.embed(["hello"])

    def test_order_correspondence(self, ready_model, fake_embedder):
        """Row i of the output embeds input i."""
        batch = ready_model.embed(["alpha", "beta", "gamma"])

        assert batch.shape == (3, fake_embedder.dimension)
        assert batch.dtype == np.float32
        for row, text in zip(batch, ["alpha", "beta", "gamma"]):
            np.testing.assert_allclose(row, ready_model.embed_text(text))

    def test_wrong_row_count_raises(self, test_config, fake_embedder):
        class Truncating:
            dimension = fake_embedder.dimension

            def embed(self, texts):
                return fake_embedder.embed(texts)[:-1]

        handle = ModelHandle(lambda: Truncating(), test_config)
        handle.load()

        with pytest.raises(EmbeddingError):
            handle.embed(["one", "two"])

    def test_model_failure_wrapped(self, test_config):
        class Exploding:
            dimension = test_config.dimension

            def embed(self, texts):
                raise MemoryError("out of memory")

        handle = ModelHandle(lambda: Exploding(), test_config)
        handle.load()

        with pytest.raises(EmbeddingError) as exc_info:
            handle.embed(["text"])
        assert not isinstance(exc_info.value, ModelUnavailableError)


class TestSentenceTransformerEmbedder:
    """Tests for the sentence-transformers backend (model mocked)."""

    def test_batches_and_stacks(self, test_config):
        test_config.embedder_batch_size = 4

        with patch("sentence_transformers.SentenceTransformer") as model_cls:
            model = model_cls.return_value
            model.get_sentence_embedding_dimension.return_value = test_config.dimension
            model.encode.side_effect = lambda batch, **kwargs: np.ones(
                (len(batch), test_config.dimension), dtype=np.float32
            )

            embedder = SentenceTransformerEmbedder(test_config)
            vectors = embedder.embed([f"text {i}" for i in range(10)])

        assert vectors.shape == (10, test_config.dimension)
        assert model.encode.call_count == 3
        assert model_cls.call_args.args[0] == test_config.model_name

    def test_empty_batch_skips_model(self, test_config):
        embedder = SentenceTransformerEmbedder(test_config)

        assert embedder.embed([]).shape == (0, test_config.dimension)
        assert embedder._model is None


class TestSerialization:
    def test_round_trip(self):
        vector = np.arange(8, dtype=np.float32)
        np.testing.assert_array_equal(deserialize_embedding(serialize_embedding(vector)), vector)

"""
Embedder - Batch text-to-vector embedding and model lifecycle.

The Embedder protocol is the capability the pipeline depends on;
SentenceTransformerEmbedder implements it with sentence-transformers.
ModelHandle owns model initialization: loading runs on its own thread
with bounded exponential-backoff retries, and its state
(LOADING -> READY | PERMANENTLY_FAILED) is what queries poll before
embedding anything.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from .config import get_config, SearchConfig
from .errors import DimensionMismatchError, EmbeddingError, ModelUnavailableError


logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Converts an ordered batch of strings into one vector per string."""

    @property
    def dimension(self) -> int: ...

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...


class SentenceTransformerEmbedder:
    """
    sentence-transformers backed embedder.

    Produces L2-normalized float32 vectors (384 dims for the default
    all-MiniLM-L6-v2).
    """

    def __init__(self, config: SearchConfig | None = None):
        self.config = config or get_config()
        self._model = None
        self._dimension: int = self.config.dimension

    def _get_model(self):
        """Lazy-load the embedding model on the best available device."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            import torch

            device = "cpu"
            if torch.backends.mps.is_available():
                device = "mps"
            elif torch.cuda.is_available():
                device = "cuda"

            logger.info(f"Loading embedding model {self.config.model_name} on {device}...")
            self._model = SentenceTransformer(self.config.model_name, device=device)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded model (dim={self._dimension}) on {device}")
        return self._model

    @property
    def dimension(self) -> int:
        """Get embedding dimension (loads model if needed)."""
        self._get_model()
        return self._dimension

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """
        Embed texts in batches.

        Returns:
            float32 array of shape (len(texts), dimension)
        """
        if not texts:
            return np.zeros((0, self._dimension), dtype=np.float32)

        model = self._get_model()
        batch_size = self.config.embedder_batch_size
        all_embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = list(texts[i:i + batch_size])
            embeddings = model.encode(
                batch,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
            all_embeddings.append(embeddings)

        return np.vstack(all_embeddings).astype(np.float32, copy=False)


def load_sentence_transformer(config: SearchConfig | None = None) -> SentenceTransformerEmbedder:
    """Model loader for ModelHandle: builds the embedder and loads weights."""
    embedder = SentenceTransformerEmbedder(config)
    embedder._get_model()
    return embedder


class ModelState(Enum):
    """Lifecycle of the embedding model."""
    LOADING = "loading"
    READY = "ready"
    PERMANENTLY_FAILED = "permanently_failed"


class ModelHandle:
    """
    The shared embedding model instance and its lifecycle.

    Call start() once at startup. Until the state is READY, embed()
    raises ModelUnavailableError; after max attempts are exhausted
    the state stays PERMANENTLY_FAILED for the life of the process.
    """

    def __init__(
        self,
        loader: Callable[[], Embedder],
        config: SearchConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or get_config()
        self._loader = loader
        self._sleep = sleep
        self._embedder: Optional[Embedder] = None
        self._state = ModelState.LOADING
        self._settled = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.attempts = 0
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ModelState.READY

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def start(self) -> None:
        """Begin loading on a background thread (no-op if started or settled)."""
        if self._thread is not None or self._settled.is_set():
            return
        self._thread = threading.Thread(
            target=self.load,
            name="model-loader",
            daemon=True,
        )
        self._thread.start()

    def load(self) -> ModelState:
        """
        Load the model with bounded retries (blocking).

        Delays between attempts double from model_backoff_base up to
        model_backoff_max.
        """
        max_attempts = max(1, self.config.model_max_attempts)

        while self.attempts < max_attempts:
            self.attempts += 1
            try:
                embedder = self._loader()
                if embedder.dimension != self.config.dimension:
                    raise DimensionMismatchError(self.config.dimension, embedder.dimension)
            except DimensionMismatchError as e:
                # Retrying cannot fix a misconfigured dimension
                logger.error(f"Embedding model unusable: {e}")
                self.last_error = e
                break
            except Exception as e:
                self.last_error = e
                logger.warning(
                    f"Model load attempt {self.attempts}/{max_attempts} failed: {e}"
                )
                if self.attempts < max_attempts:
                    delay = min(
                        self.config.model_backoff_base * (2 ** (self.attempts - 1)),
                        self.config.model_backoff_max,
                    )
                    self._sleep(delay)
                continue

            self._embedder = embedder
            self._state = ModelState.READY
            self._settled.set()
            logger.info(f"Embedding model ready after {self.attempts} attempt(s)")
            return self._state

        self._state = ModelState.PERMANENTLY_FAILED
        self._settled.set()
        logger.error(
            f"Embedding model permanently unavailable after {self.attempts} attempt(s)"
        )
        return self._state

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until loading settles; True if the model is READY."""
        self._settled.wait(timeout)
        return self.is_ready

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """
        Embed an ordered batch; one row per input, same order.

        Raises:
            ModelUnavailableError: model is not READY
            EmbeddingError: the model failed or returned the wrong shape
        """
        if self._state is not ModelState.READY or self._embedder is None:
            raise ModelUnavailableError(f"Embedding model is {self._state.value}")

        texts = list(texts)
        try:
            vectors = np.asarray(self._embedder.embed(texts), dtype=np.float32)
        except Exception as e:
            raise EmbeddingError(f"Embedding {len(texts)} texts failed: {e}") from e

        expected = (len(texts), self.config.dimension)
        if vectors.shape != expected:
            raise EmbeddingError(f"Embedder returned shape {vectors.shape}, expected {expected}")

        return vectors

    def embed_text(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return self.embed([text])[0]


def serialize_embedding(embedding: np.ndarray) -> bytes:
    """Convert embedding to float32 bytes for storage."""
    return np.asarray(embedding, dtype=np.float32).tobytes()


def deserialize_embedding(data: bytes) -> np.ndarray:
    """Convert stored bytes back to a float32 embedding."""
    return np.frombuffer(data, dtype=np.float32)


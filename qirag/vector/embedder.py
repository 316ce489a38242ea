"""Local embedding generation using sentence-transformers."""

import logging
from typing import Iterator

from sentence_transformers import SentenceTransformer

from ..retrieval.config import DEFAULT_EMBEDDING_MODEL

log = logging.getLogger(__name__)

# Options:
# - BAAI/bge-m3: Best quality on Chinese, 2.2GB, needs 6GB+ VRAM
# - shibing624/text2vec-base-chinese: Chinese only, 400MB
# - sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2: Multilingual, 470MB
MAX_INPUT_CHARS = 8000


class Embedder:
    """Generate normalized embeddings with a local sentence-transformers model."""

    def __init__(self, model: str = DEFAULT_EMBEDDING_MODEL):
        log.info(f"Loading embedding model: {model}")
        self.model = SentenceTransformer(model)
        self.dimensions = self.model.get_sentence_embedding_dimension()
        log.info(f"Model loaded. Dimensions: {self.dimensions}")

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one call.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in input order
        """
        if not texts:
            return []
        return list(self.embed_batch(texts))

    def embed_batch(
        self, texts: list[str], batch_size: int = 32
    ) -> Iterator[list[float]]:
        """Generate embeddings for many texts.

        Args:
            texts: List of texts to embed
            batch_size: Number of texts per batch

        Yields:
            Embeddings for each text
        """
        texts = [t[:MAX_INPUT_CHARS] for t in texts]

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            embeddings = self.model.encode(
                batch, normalize_embeddings=True, show_progress_bar=False
            )

            for emb in embeddings:
                yield emb.tolist()

"""Embedding generation service using local models via fastembed"""

import logging

from fastembed import TextEmbedding

from bookfinder.config import config
from bookfinder.exceptions import EmbeddingProviderError

logger = logging.getLogger(__name__)


def book_text(title: str, description: str) -> str:
    """Text a book's embedding is computed from"""
    return f"{title}. {description}"


class Embedder:
    """Generate embeddings using local models (fastembed) with caching"""

    def __init__(self, model: TextEmbedding | None = None):
        """Initialize embedding model with local caching"""
        self.model = model or TextEmbedding(
            model_name=config.embedding_model,
            cache_dir=config.fastembed_cache_dir,
            threads=config.embedding_threads,
        )

    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text

        Args:
            text: Text to embed

        Returns:
            list[float]: 384-dimensional embedding vector (for bge-small-en-v1.5)

        Raises:
            EmbeddingProviderError: If the model fails
        """
        try:
            # fastembed returns generator, convert to list
            embeddings = list(self.model.embed([text]))
            return embeddings[0].tolist()
        except Exception as e:
            logger.error(f"Error creating embedding: {e}")
            raise EmbeddingProviderError() from e

    async def embed_batch(
        self, texts: list[str], batch_size: int | None = None
    ) -> list[list[float]]:
        """
        Generate embeddings for multiple texts in batches

        Args:
            texts: List of texts to embed
            batch_size: Number of texts to process per batch (default from config)

        Returns:
            list[list[float]]: One embedding vector per input, in input order

        Raises:
            EmbeddingProviderError: If the model fails on any batch
        """
        if not texts:
            return []

        batch_size = batch_size or config.embedding_batch_size

        embeddings: list[list[float]] = []

        try:
            for i in range(0, len(texts), batch_size):
                batch = texts[i : i + batch_size]

                # fastembed processes batches efficiently
                batch_embeddings = list(self.model.embed(batch))

                # Convert numpy arrays to lists
                embeddings.extend([emb.tolist() for emb in batch_embeddings])

                logger.debug(f"Embedded {min(i + batch_size, len(texts))}/{len(texts)} texts")
        except Exception as e:
            logger.error(f"Error creating batch embeddings: {e}")
            raise EmbeddingProviderError("Failed to generate batch embeddings") from e

        return embeddings

    async def embed_book(self, title: str, description: str) -> list[float]:
        """Generate the embedding for a book from its title and description"""
        return await self.embed_text(book_text(title, description))

    async def close(self) -> None:
        """Cleanup resources (fastembed handles cleanup automatically)"""
        pass

    def download_model(self) -> None:
        """
        Make sure the model is cached locally and loads

        Constructing the embedder downloads the model into the cache directory;
        this runs one embedding through it so a broken cache fails the seed early.
        """
        logger.info(f"Loading embedding model {config.embedding_model}...")
        try:
            list(self.model.embed(["warm up"]))
        except Exception as e:
            logger.error(f"Error loading embedding model: {e}")
            raise EmbeddingProviderError("Failed to load embedding model") from e
        logger.info(f"Model {config.embedding_model} cached in {config.fastembed_cache_dir}")

"""
Text embeddings for questions and graph nodes.
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from sentence_transformers import SentenceTransformer

from .config import EMBEDDING_MODEL

logger = logging.getLogger(__name__)

# Thread pool for CPU-bound operations
_executor = ThreadPoolExecutor(max_workers=2)

# Load embedding model once (lazy init)
_embedding_model: Optional[SentenceTransformer] = None


def _get_embedding_model() -> SentenceTransformer:
    """Lazy load the embedding model."""
    global _embedding_model
    if _embedding_model is None:
        logger.info(f"Loading embedding model: {EMBEDDING_MODEL}")
        _embedding_model = SentenceTransformer(EMBEDDING_MODEL)
        logger.info("Embedding model loaded")
    return _embedding_model


def _generate_embeddings_sync(texts: List[str]) -> List[List[float]]:
    """Generate embeddings - runs in thread pool."""
    model = _get_embedding_model()
    embeddings = model.encode(texts, show_progress_bar=False, convert_to_numpy=True)
    return embeddings.tolist()


async def generate_embeddings(texts: List[str]) -> List[List[float]]:
    """Async embedding generation."""
    if not texts:
        return []

    logger.debug(f"Generating embeddings for {len(texts)} texts")
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, _generate_embeddings_sync, texts)

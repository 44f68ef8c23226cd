"""Similarity kernel: cosine math, embeddings and clustering."""

from mnemosync.similarity.embedding import build_embedding_provider
from mnemosync.similarity.embedding import Embedder
from mnemosync.similarity.embedding import EmbeddingProvider
from mnemosync.similarity.embedding import HashEmbeddingProvider
from mnemosync.similarity.embedding import OpenAIEmbeddingProvider
from mnemosync.similarity.kernel import Cluster
from mnemosync.similarity.kernel import cosine_similarity
from mnemosync.similarity.kernel import fallback_embedding
from mnemosync.similarity.kernel import greedy_cluster

__all__ = [
    "Cluster",
    "Embedder",
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "build_embedding_provider",
    "cosine_similarity",
    "fallback_embedding",
    "greedy_cluster",
]

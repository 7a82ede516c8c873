"""
Config for the knowledge base.
All settings come from environment variables with defaults.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Milvus
MILVUS_HOST = os.getenv("MILVUS_HOST", "localhost")
MILVUS_PORT = int(os.getenv("MILVUS_PORT", "19530"))
CHUNK_COLLECTION = os.getenv("MILVUS_CHUNK_COLLECTION", "chunks")
KEY_CONCEPT_COLLECTION = os.getenv("MILVUS_KEY_CONCEPT_COLLECTION", "key_concepts")
ATOMIC_FACT_COLLECTION = os.getenv("MILVUS_ATOMIC_FACT_COLLECTION", "atomic_facts")

# Embeddings - using sentence-transformers (runs locally, fast)
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
EMBEDDING_DIM = 384  # Fixed for all-MiniLM-L6-v2

# Default candidate limits, overridable per session through `limits`
MAX_KEY_CONCEPTS = int(os.getenv("MAX_KEY_CONCEPTS", "100"))
MAX_ATOMIC_FACTS = int(os.getenv("MAX_ATOMIC_FACTS", "1000"))
MAX_CHUNKS = int(os.getenv("MAX_CHUNKS", "20"))

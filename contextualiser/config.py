"""
Config for the contextualiser.
All settings come from environment variables with defaults.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Ollama LLM (scoring calls)
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
LLM_MODEL = os.getenv("LLM_MODEL", "llama3")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "120"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.1"))

# Redis for chat history and notifications
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
HISTORY_LENGTH = int(os.getenv("HISTORY_LENGTH", "20"))
NOTIFICATION_CHANNEL = os.getenv("NOTIFICATION_CHANNEL", "contextualiser")

# Traversal budget
MAX_HOPS = int(os.getenv("MAX_HOPS", "20"))
HOP_SAFETY_MARGIN = 5
HOP_SOFT_LIMIT = MAX_HOPS - HOP_SAFETY_MARGIN
CHUNK_LEVEL_CAP = 3

# Fan-out sizes
ATOMIC_FACT_BATCH_SIZE = int(os.getenv("ATOMIC_FACT_BATCH_SIZE", "50"))
KEY_CONCEPT_QUEUE_SIZE = 10

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


# Credentials
GEMINI_API_KEY: str | None = os.environ.get("GEMINI_API_KEY")
KALSHI_API_KEY: str | None = os.environ.get("KALSHI_API_KEY")

# Models
JUDGE_MODEL: str = os.environ.get("JUDGE_MODEL", "gemini-2.5-flash")
EMBEDDING_MODEL: str = os.environ.get("EMBEDDING_MODEL", "gemini-embedding-001")
JUDGE_MAX_OUTPUT_TOKENS: int = _int("JUDGE_MAX_OUTPUT_TOKENS", 2000)

# Decision thresholds
SIMILARITY_THRESHOLD: float = _float("SIMILARITY_THRESHOLD", 0.65)
MIN_VIABLE_SPREAD: float = _float("MIN_VIABLE_SPREAD", 3.0)       # cents
MATCH_MIN_SIMILARITY: float = _float("MATCH_MIN_SIMILARITY", 0.6)
MAX_PAIRS_PER_BATCH: int = _int("MAX_PAIRS_PER_BATCH", 5)
DISCOVERY_LIMIT: int = _int("DISCOVERY_LIMIT", 20)

# "loose" trusts the market id; "strict" re-embeds when question text changed
CACHE_TEXT_POLICY: str = os.environ.get("CACHE_TEXT_POLICY", "loose")
# "auto" | "token" | "embedding": which similarity gates escalation
SIMILARITY_SOURCE: str = os.environ.get("SIMILARITY_SOURCE", "auto")

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

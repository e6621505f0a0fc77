import os
from pathlib import Path

PROJECT_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR", str(PROJECT_DIR / "data")))
SQLITE_PATH = DATA_DIR / "coaching.db"

PORT = int(os.environ.get("PORT", "19876"))
ROOT_PATH = os.environ.get("ROOT_PATH", "")

# OpenAI-compatible chat completions endpoint
GATEWAY_URL = os.environ.get("GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
GATEWAY_API_KEY = os.environ.get("GATEWAY_API_KEY", "")
MODEL = os.environ.get("MODEL", "google/gemini-2.5-flash")
GATEWAY_CONNECT_TIMEOUT_SECS = float(os.environ.get("GATEWAY_CONNECT_TIMEOUT_SECS", "10"))
GATEWAY_READ_TIMEOUT_SECS = float(os.environ.get("GATEWAY_READ_TIMEOUT_SECS", "120"))
# When set, sessions stream from this {messages} proxy instead of the gateway
COACHING_URL = os.environ.get("COACHING_URL", "")

# Idle coaching sessions are dropped from memory after this long
SESSION_TTL_MINUTES = int(os.environ.get("SESSION_TTL_MINUTES", "30"))

TITLE_MAX_CHARS = 50
DEFAULT_CONVERSATION_TITLE = "New Conversation"

import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "http://localhost:3000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Completion service (any OpenAI-compatible endpoint, Groq by default)
AI_API_KEY = os.getenv("AI_API_KEY", os.getenv("API_KEY"))
AI_BASE_URL = os.getenv("AI_BASE_URL", "https://api.groq.com/openai/v1")
AI_MODEL = os.getenv("AI_MODEL", "openai/gpt-oss-20b")
AI_REQUEST_TIMEOUT = float(os.getenv("AI_REQUEST_TIMEOUT", 30))

HISTORY_LIMIT = 20
GRACE_PERIOD_SECONDS = 5

AI_TRIGGER = "@ai"
SYSTEM_SENDER = "System"
AI_SENDER = "AI 🤖"
AI_FALLBACK_TEXT = "⚠️ AI is temporarily unavailable."
AI_INSTRUCTIONS = (
    "You are an AI assistant inside an anonymous group chat.\n"
    "Be concise, friendly, and helpful."
)

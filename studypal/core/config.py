import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studypal.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0") == "1"

# ✅ Auth (Supabase-issued JWTs)
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "dev-insecure-jwt-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")

# ✅ OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "500"))
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))

# ✅ Chat request lifecycle
MIN_RESPONSE_DELAY_MS = int(os.getenv("MIN_RESPONSE_DELAY_MS", "2000"))
TYPEWRITER_WORD_THRESHOLD = int(os.getenv("TYPEWRITER_WORD_THRESHOLD", "50"))
AI_REQUEST_TIMEOUT_SECONDS = float(os.getenv("AI_REQUEST_TIMEOUT_SECONDS", "60"))

# ✅ Anonymous usage storage
ANONYMOUS_USAGE_DIR = os.getenv("ANONYMOUS_USAGE_DIR", "data/anonymous_usage")

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# ✅ Contact form email
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
CONTACT_EMAIL = os.getenv("CONTACT_EMAIL") or EMAIL_USER
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))

# ✅ Frontend / CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
    ).split(",")
    if origin.strip()
]

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

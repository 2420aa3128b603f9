import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./guardcrm.db")

# Hosted auth provider (Supabase) - tokens are HS256 JWTs signed with the project JWT secret
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

# Field-level PII encryption master key (min 32 chars)
PII_ENCRYPTION_KEY = os.getenv("PII_ENCRYPTION_KEY")

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
SITE_URL = os.getenv("SITE_URL", "http://localhost:8000")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "GuardCRM <noreply@guardcrm.app>")

# Calendar OAuth Configuration
# Redirect URIs point at the backend callback; the callback redirects back to the frontend
GOOGLE_CALENDAR_CLIENT_ID = os.getenv("GOOGLE_CALENDAR_CLIENT_ID")
GOOGLE_CALENDAR_CLIENT_SECRET = os.getenv("GOOGLE_CALENDAR_CLIENT_SECRET")
MICROSOFT_CLIENT_ID = os.getenv("MICROSOFT_CLIENT_ID")
MICROSOFT_CLIENT_SECRET = os.getenv("MICROSOFT_CLIENT_SECRET")
MICROSOFT_TENANT = os.getenv("MICROSOFT_TENANT", "common")
CALENDAR_OAUTH_REDIRECT_URI = os.getenv(
    "CALENDAR_OAUTH_REDIRECT_URI", f"{SITE_URL}/api/v1/calendar/oauth/callback"
)

# Background jobs / retention
REDIS_URL = os.getenv("REDIS_URL")
CRON_SECRET = os.getenv("CRON_SECRET")
RETENTION_API_KEY = os.getenv("RETENTION_API_KEY")

# Public intake rate limit (requests per window per client IP)
LEAD_INTAKE_RATE_LIMIT = int(os.getenv("LEAD_INTAKE_RATE_LIMIT", "10"))
LEAD_INTAKE_RATE_WINDOW = int(os.getenv("LEAD_INTAKE_RATE_WINDOW", "60"))

# HTTP surface
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:5173").split(",")
    if origin.strip()
]
SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"

from decouple import config

DATABASE_URL = config("DATABASE_URL", default="sqlite:///./casebilling.db")
SQL_ECHO = config("SQL_ECHO", default=False, cast=bool)

# Bearer tokens issued by the identity service
JWT_SECRET = config("JWT_SECRET", default="dev-secret-change-me")
JWT_ALGORITHM = config("JWT_ALGORITHM", default="HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = config("ACCESS_TOKEN_EXPIRE_MINUTES", default=30, cast=int)

# Billing engine
MIN_PROFITABILITY_ENTRIES = config("MIN_PROFITABILITY_ENTRIES", default=1, cast=int)
REJECTION_REASON_MIN_LENGTH = config("REJECTION_REASON_MIN_LENGTH", default=10, cast=int)
REJECTION_REASON_MAX_LENGTH = config("REJECTION_REASON_MAX_LENGTH", default=2000, cast=int)
RETAINER_HISTORY_LIMIT = config("RETAINER_HISTORY_LIMIT", default=12, cast=int)
TX_RETRY_ATTEMPTS = config("TX_RETRY_ATTEMPTS", default=3, cast=int)

LOG_LEVEL = config("LOG_LEVEL", default="INFO")

CORS_ORIGINS = config(
    "CORS_ORIGINS",
    default="http://localhost:3000,http://localhost:8080",
    cast=lambda value: [origin.strip() for origin in value.split(",") if origin.strip()],
)

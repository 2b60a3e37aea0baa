import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///marketplace.db")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Shared secret for service-to-service calls into /wallet/credit and /wallet/release
    INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY")

    CURRENCY = os.getenv("CURRENCY", "INR")
    COMMISSION_RATE = float(os.getenv("COMMISSION_RATE", "5.0"))  # percent
    MIN_WITHDRAWAL_AMOUNT = int(os.getenv("MIN_WITHDRAWAL_AMOUNT", "500"))
    LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))
    STUCK_RELEASE_THRESHOLD_HOURS = int(os.getenv("STUCK_RELEASE_THRESHOLD_HOURS", "72"))

    PAYMENT_GATEWAY_KEY_SECRET = os.getenv("PAYMENT_GATEWAY_KEY_SECRET")

    PAYOUT_ENABLED = _env_bool("PAYOUT_ENABLED")
    PAYOUT_API_BASE = os.getenv("PAYOUT_API_BASE", "https://api.razorpay.com/v1")
    PAYOUT_KEY_ID = os.getenv("PAYOUT_KEY_ID")
    PAYOUT_KEY_SECRET = os.getenv("PAYOUT_KEY_SECRET")
    PAYOUT_ACCOUNT_NUMBER = os.getenv("PAYOUT_ACCOUNT_NUMBER")
    PAYOUT_MODE = os.getenv("PAYOUT_MODE", "NEFT")
    PAYOUT_TIMEOUT_SECONDS = float(os.getenv("PAYOUT_TIMEOUT_SECONDS", "15"))

    COURIER_API_BASE = os.getenv("COURIER_API_BASE", "https://apiv2.shiprocket.in/v1/external")
    COURIER_EMAIL = os.getenv("COURIER_EMAIL")
    COURIER_PASSWORD = os.getenv("COURIER_PASSWORD")
    COURIER_WEBHOOK_SECRET = os.getenv("COURIER_WEBHOOK_SECRET")
    COURIER_TOKEN_TTL_SECONDS = int(os.getenv("COURIER_TOKEN_TTL_SECONDS", str(10 * 60 * 60)))
    COURIER_TIMEOUT_SECONDS = float(os.getenv("COURIER_TIMEOUT_SECONDS", "20"))


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs256-signing"
    INTERNAL_API_KEY = "internal-test-key"
    PAYMENT_GATEWAY_KEY_SECRET = "payment-test-secret"
    COURIER_WEBHOOK_SECRET = "courier-test-secret"
    PAYOUT_ENABLED = True
    PAYOUT_KEY_ID = "rzp_test_key"
    PAYOUT_KEY_SECRET = "rzp_test_secret"
    PAYOUT_ACCOUNT_NUMBER = "2323230000000000"


CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}

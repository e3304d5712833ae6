# config.py
import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    # Remote escrow API
    ESCROW_API_URL = os.getenv("ESCROW_API_URL", "http://0.0.0.0:8000")
    API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))

    # Session cookie (holds only the auth token pair)
    SECRET_KEY = os.getenv("GATEWAY_SECRET", "dev")
    SESSION_COOKIE_SAMESITE = "Lax"

    # Display
    CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₵")

    DEBUG = os.getenv("GATEWAY_DEBUG", "0").lower() in ("1", "true", "yes")
    PORT = int(os.getenv("PORT", "5000"))

    # Tests swap in a fake; None means build an EscrowApiClient per request.
    API_CLIENT_FACTORY = None

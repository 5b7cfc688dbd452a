"""Shared constants for Keystore."""

SERVER_NAME = "Keystore"
SERVER_VERSION = "0.1.0"

# Network defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4000

# HTTP paths
HEALTH_PATH = "/health"
ADMIN_API_PREFIX = "/admin"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = "INFO"

# Store defaults
DEFAULT_STORE_PATH = "data/keys.enc"
STORE_FORMAT_VERSION = 1

# Cipher parameters (AES-256-GCM)
KEY_SIZE = 32  # bytes
NONCE_SIZE = 12  # bytes
TAG_SIZE = 16  # bytes

# Admin API rate limits ("limits" string syntax)
DEFAULT_ADMIN_RATE_LIMIT = "10/minute"
DEFAULT_TEST_RATE_LIMIT = "5/minute"

# Providers the connectivity probe knows how to reach
KNOWN_PROVIDERS = ("visualcrossing", "newsapi", "gnews")

# Seed variables read when no store file exists yet
SEED_ENV_VARS = {
    "visualcrossing": "VISUALCROSSING_API_KEY",
    "newsapi": "NEWSAPI_API_KEY",
    "gnews": "GNEWS_API_KEY",
}

PROBE_TIMEOUT = 5.0  # seconds

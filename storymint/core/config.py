import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/storymint_db")
DB_MAX_RETRIES = int(os.getenv("DB_MAX_RETRIES", 5)) # Connection attempts before giving up
DB_RETRY_DELAY_MS = int(os.getenv("DB_RETRY_DELAY_MS", 1000)) # Base backoff, doubled per attempt

# Application Metadata
PROJECT_NAME = "StoryMint Mint Pipeline"
VERSION = "1.0.0"

# Outbox Dispatcher Configuration
POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", 2)) # Idle sleep between polls, in seconds
MAX_RETRIES = int(os.getenv("MAX_RETRIES", 5)) # Attempts before an event is marked failed
OUTBOX_VISIBILITY_TIMEOUT = int(os.getenv("OUTBOX_VISIBILITY_TIMEOUT", 300)) # Seconds before a stuck claim is requeued
MAINTENANCE_INTERVAL = int(os.getenv("MAINTENANCE_INTERVAL", 60)) # Seconds between reconciliation sweeps

# Royalty Ledger
ROYALTY_RECONCILE_AFTER = int(os.getenv("ROYALTY_RECONCILE_AFTER", 600)) # Age of a pending transaction before it is re-settled
MAX_ROYALTY_PERCENTAGE = 50

# Service-to-service auth
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")

# Chain relay
CHAIN_RPC_URL = os.getenv("CHAIN_RPC_URL", "http://chain-relay:8545")
CHAIN_TIMEOUT = float(os.getenv("CHAIN_TIMEOUT", 30))

# Define all models modules for the ORM
MODELS_MODULES = [
    "storymint.models.outbox",
    "storymint.models.mint_intent",
    "storymint.models.story",
    "storymint.models.royalty",
]

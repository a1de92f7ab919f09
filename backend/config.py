from dotenv import load_dotenv
from pathlib import Path
import os

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Storage backend: "mongo" (replica set required for transactions) or "memory"
LEDGER_STORE = os.getenv("LEDGER_STORE", "mongo")
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017/?replicaSet=rs0")
DB_NAME = os.getenv("DB_NAME", "ledger")

# Per-transaction deadline; unset means no deadline
LEDGER_TXN_TIMEOUT_SECONDS = float(os.environ["LEDGER_TXN_TIMEOUT_SECONDS"]) if os.getenv("LEDGER_TXN_TIMEOUT_SECONDS") else None
# TransientTransactionError retries in the MongoDB backend
LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-in-production-2024")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

"""Run Club configuration — loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Stripe
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_PRICE_RUNNER_PRO = os.environ.get("STRIPE_PRICE_RUNNER_PRO", "price_runner_pro")
STRIPE_PRICE_LEADER_PRO = os.environ.get("STRIPE_PRICE_LEADER_PRO", "price_leader_pro")

# Public base URL (Stripe success/cancel/return URLs)
PUBLIC_URL = os.environ.get("PUBLIC_URL", "http://localhost:8000")

# Live views: delay before the unconditional re-fetch after a user action
RECONCILE_DELAY_SECONDS = float(os.environ.get("RECONCILE_DELAY_SECONDS", "0.1"))

# Where unauthenticated users are sent
SIGN_IN_PATH = "/auth/sign-in"

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info")

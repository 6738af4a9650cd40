#!/usr/bin/env python3
"""Run Club — API and live roster server.

Launch: python3 runclub_server.py
Serves at http://0.0.0.0:8000 (or PORT env var)
"""

import logging
import os

import uvicorn

from runclub.config import HOST, LOG_LEVEL, PORT


def main():
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 60)
    print("  Run Club")
    print("=" * 60)

    if not os.environ.get("SUPABASE_URL", ""):
        print("\n  WARNING: SUPABASE_URL not set. Set environment variables:")
        print("    SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_SERVICE_KEY")
        print("  Continuing anyway for local development...\n")
    if not os.environ.get("STRIPE_SECRET_KEY", ""):
        print("  NOTE: STRIPE_SECRET_KEY not set — checkout and portal are disabled.\n")

    url = f"http://{HOST}:{PORT}"
    print(f"  API:        {url}/docs")
    print(f"  Live views: ws://{HOST}:{PORT}/live/{{explore,members,dashboard}}")
    print("  Press Ctrl+C to stop\n")

    from runclub.app import create_app
    app = create_app()
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL)


if __name__ == "__main__":
    main()

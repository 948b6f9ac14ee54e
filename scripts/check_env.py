#!/usr/bin/env python3
"""Check that the environment is complete before deploying.

Usage:
    python scripts/check_env.py [--probe]

Reads config from environment variables. With --probe, also verifies the
Gemini key against the models endpoint.
"""
import os
import sys
import httpx
from dotenv import load_dotenv

load_dotenv()

REQUIRED = ["SECRET_KEY", "DATABASE_URL", "FIREBASE_API_KEY"]
OPTIONAL = {
    "GEMINI_API_KEY": "users must send their own X-Goog-Api-Key",
    "REDIS_URL": "jobs will run inline inside web requests",
    "S3_ACCESS_KEY": "images and videos will be stored in the database",
}


def main():
    missing = [key for key in REQUIRED if not os.environ.get(key, "").strip()]
    warnings = [
        (key, note) for key, note in OPTIONAL.items()
        if not os.environ.get(key, "").strip()
    ]
    if os.environ.get("GEMINI_API_KEY_FILE") and os.path.exists(os.environ["GEMINI_API_KEY_FILE"]):
        warnings = [(k, n) for k, n in warnings if k != "GEMINI_API_KEY"]

    for key, note in warnings:
        print(f"Warning: {key} not set ({note})")

    if missing:
        print("Error: missing required environment variables:")
        for key in missing:
            print(f"  - {key}")
        sys.exit(1)

    if "--probe" in sys.argv[1:] and os.environ.get("GEMINI_API_KEY"):
        base = os.environ.get(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/")
        resp = httpx.get(
            f"{base}/models",
            headers={"x-goog-api-key": os.environ["GEMINI_API_KEY"].strip()},
        )
        if resp.status_code != 200:
            print(f"Error: Gemini key rejected ({resp.status_code})")
            sys.exit(1)
        print("Gemini key accepted")

    print("Environment OK")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
healthcheck.py
- Basic healthcheck script for Docker HEALTHCHECK.
- Returns exit code 0 if the balloon-orch API reports ok, 1 if not.
"""

import os
import sys

import requests

from balloon_orch.core import config


def health_url():
    """HEALTHCHECK_URL if set, else /healthz on the port the API listens on (API_PORT)."""
    return os.getenv("HEALTHCHECK_URL") or f"http://127.0.0.1:{config.API_PORT}/healthz"


def check(url=None, timeout=3):
    url = url or health_url()
    try:
        response = requests.get(url, timeout=timeout)
        return response.status_code == 200 and response.json().get("status") == "ok"
    except (requests.RequestException, ValueError) as e:
        print(f"❌ Healthcheck failed: {e}")
        return False


def main():
    if check():
        sys.exit(0)  # Healthy
    else:
        print("❌ Healthcheck failed: balloon-orch API not healthy")
        sys.exit(1)  # Unhealthy


if __name__ == "__main__":
    main()

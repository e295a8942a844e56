#!/usr/bin/env python3
"""
Mint a local access token for manual API calls.

Tokens are normally issued by the auth service. This script signs one with
the configured JWT secret so the payment endpoints can be exercised locally.

Usage:
    python scripts/issue_token.py user_123
    python scripts/issue_token.py admin_1 --role admin --minutes 60
"""

import argparse
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.security import create_access_token  # noqa: E402

TOKEN_FILE = Path(__file__).parent.parent / ".token"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Issue a local access token")
    parser.add_argument("user_id")
    parser.add_argument("--role", default="user")
    parser.add_argument("--minutes", type=int, default=15)
    args = parser.parse_args()

    token = create_access_token(
        {"sub": args.user_id, "role": args.role},
        expires_delta=timedelta(minutes=args.minutes),
    )
    TOKEN_FILE.write_text(token)
    print(token)

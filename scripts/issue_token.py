#!/usr/bin/env python3
"""
Issue a bearer token for a portal user's email.
Stands in for the identity provider when exercising the API locally.
"""

import sys

from salesops.config import TOKEN_EXPIRY_HOURS
from salesops.api.auth import generate_token

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/issue_token.py <email>", file=sys.stderr)
        sys.exit(2)

    email = sys.argv[1].strip()
    token = generate_token(email)

    print("=" * 60)
    print(f"Bearer token for {email} (valid {TOKEN_EXPIRY_HOURS}h)")
    print("=" * 60)
    print(f"\n{token}\n")
    print("Use it as:  Authorization: Bearer <token>")

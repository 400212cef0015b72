#!/usr/bin/env python3
"""
Print a starter .env for HealthInspect with a fresh JWT signing key.

    python scripts/generate_secret_key.py              # 32-byte key
    python scripts/generate_secret_key.py --bytes 64
"""

import argparse
import secrets

ENV_TEMPLATE = """\
DB_URI={db_uri}
JWT_SECRET_KEY={secret_key}
API_HOST=0.0.0.0
API_PORT=8000
SEED_PASSWORD={seed_password}
"""


def build_env(num_bytes: int = 32, db_uri: str = "sqlite:///healthinspect.db") -> str:
    if num_bytes < 32:
        raise ValueError("HS256 keys should be at least 32 bytes")
    return ENV_TEMPLATE.format(
        db_uri=db_uri,
        secret_key=secrets.token_hex(num_bytes),
        seed_password=secrets.token_urlsafe(12),
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--bytes", type=int, default=32, dest="num_bytes")
    parser.add_argument("--db-uri", default="sqlite:///healthinspect.db")
    args = parser.parse_args()

    print("=" * 60)
    print("HealthInspect .env starter")
    print("=" * 60)
    print()
    print(build_env(args.num_bytes, args.db_uri), end="")
    print("\n" + "=" * 60)
    print("Copy the lines above to your .env file; keep JWT_SECRET_KEY private.")
    print("SEED_PASSWORD is used by scripts/seed_data.py for every demo account.")
    print("=" * 60)

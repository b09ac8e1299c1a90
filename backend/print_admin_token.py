"""Print a bearer token for the /admin API to stdout.

Usage:
    python -m backend.print_admin_token admin@example.com [expires_minutes]
"""
import sys

from backend.auth.jwt_handler import create_access_token


def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python -m backend.print_admin_token <email> [expires_minutes]", file=sys.stderr)
        sys.exit(1)
    expires_minutes = int(sys.argv[2]) if len(sys.argv) > 2 else None
    print(create_access_token(subject=sys.argv[1], role="admin", expires_minutes=expires_minutes))


if __name__ == "__main__":
    main()

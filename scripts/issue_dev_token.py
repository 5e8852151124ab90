from __future__ import annotations

import argparse
from datetime import timedelta
import sys

from accessgate.domain.roles import parse_role
from accessgate.services.auth.tokens import issue_access_token


def _build_parser() -> argparse.ArgumentParser:
    # Local tooling only; production tokens come from the identity provider.
    parser = argparse.ArgumentParser(description="Issue a signed access token for local development")
    parser.add_argument("--role", required=True, help="Role: manager|developer|designer")
    parser.add_argument("--subject-id", required=True, help="Account id the token is issued for")
    parser.add_argument("--ttl-minutes", type=int, default=None, help="Override the configured lifetime")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    try:
        role = parse_role(args.role)
    except ValueError as exc:
        print(f"issue_dev_token failed: {exc}", file=sys.stderr)
        return 1
    expires_in = timedelta(minutes=args.ttl_minutes) if args.ttl_minutes else None
    token = issue_access_token(subject_id=args.subject_id, role=role, expires_in=expires_in)
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

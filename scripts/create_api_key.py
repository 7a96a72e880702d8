#!/usr/bin/env python3
"""
Create a tenant API key (and optionally the tenant itself).

The raw key is printed once; only its SHA-256 hash is stored.

Usage:
    python scripts/create_api_key.py --tenant-name "Acme Ltd" --name frontend
    python scripts/create_api_key.py --tenant-id <uuid> --name ingest-bot

Requires the schema to exist (start the API once with
CREATE_TABLES_ON_STARTUP=true).
"""

import argparse
import sys
import uuid

from docrag.db.engine import get_sync_session
from docrag.db.models import ApiKey, Tenant
from docrag.services.auth import generate_api_key


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--tenant-id", type=uuid.UUID, help="Existing tenant id")
    target.add_argument("--tenant-name", help="Create a new tenant with this name")
    parser.add_argument("--name", required=True, help="Label for the key")
    args = parser.parse_args()

    raw_key, key_prefix, key_hash = generate_api_key()

    with get_sync_session() as session:
        if args.tenant_name:
            tenant = Tenant(name=args.tenant_name)
            session.add(tenant)
            session.flush()
        else:
            tenant = session.get(Tenant, args.tenant_id)
            if tenant is None:
                print(f"Tenant {args.tenant_id} not found", file=sys.stderr)
                return 1

        session.add(ApiKey(
            tenant_id=tenant.id,
            name=args.name,
            key_prefix=key_prefix,
            key_hash=key_hash,
        ))
        tenant_id = tenant.id

    print(f"Tenant:  {tenant_id}")
    print(f"Key:     {raw_key}")
    print("Store this key now; it cannot be shown again.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

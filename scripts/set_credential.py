"""
Store an encrypted platform credential. The previous active value of the same
type and environment is deactivated.

Usage:
    # Dry run (validates the platform and credential type):
    python scripts/set_credential.py --platform stripe --type api_secret_key --value sk_test_...

    # Commit the change:
    python scripts/set_credential.py --platform hotmart --type client_id --value abc \\
        --environment production --commit

Requires ENCRYPTION_KEY (see scripts/generate_encryption_key.py).
"""
import argparse
import asyncio
import sys


async def main():
    parser = argparse.ArgumentParser(description="Store an encrypted platform credential")
    parser.add_argument("--platform", required=True, help="Platform slug (stripe, hotmart, cartpanda)")
    parser.add_argument("--type", required=True, dest="credential_type", help="Credential type")
    parser.add_argument("--value", required=True, help="Plaintext credential value")
    parser.add_argument("--environment", default=None, help="sandbox or production (default: settings)")
    parser.add_argument("--commit", action="store_true", help="Actually write changes")
    args = parser.parse_args()

    from src.database import async_session_factory
    from src.services.provider_resolver import (
        PROVIDER_REGISTRY,
        get_platform_by_slug,
        store_credential,
    )
    from src.utils.errors import PlatformNotFoundError

    registry_entry = PROVIDER_REGISTRY.get(args.platform)
    if not registry_entry:
        print(f"Unsupported platform: {args.platform}")
        sys.exit(1)
    allowed = [credential_type for credential_type, _ in registry_entry[1]]
    if args.credential_type not in allowed:
        print(f"Invalid credential type for {args.platform}. Expected one of: {', '.join(allowed)}")
        sys.exit(1)

    async with async_session_factory() as db:
        try:
            platform = await get_platform_by_slug(db, args.platform)
        except PlatformNotFoundError:
            print(f"Platform {args.platform} not found. Run scripts/seed_platforms.py first.")
            sys.exit(1)

        if not args.commit:
            print(f"[dry run] Would store {args.credential_type} for {platform.slug}. Pass --commit to write.")
            return

        await store_credential(
            db, platform.id, args.credential_type, args.value, environment=args.environment
        )
        await db.commit()
        print(f"Stored {args.credential_type} for {platform.slug}")


if __name__ == "__main__":
    asyncio.run(main())

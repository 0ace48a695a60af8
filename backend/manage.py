#!/usr/bin/env python3
"""
Maintenance commands for the chats collection.

Usage:
    python manage.py --find-invalid-models
    python manage.py --migrate-models
    python manage.py --migrate-models --to openai/gpt-4o-mini
"""

import argparse
import logging
import sys

from polychat_backend.chats.service import ChatStoreError
from polychat_backend.config import ConfigError, load_config
from polychat_backend.firebase import init_firebase
from polychat_backend.migrations import count_models, find_invalid_models, migrate_models


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Inspect and repair model ids stored on chats",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--find-invalid-models', action='store_true',
                       help='Print chat counts per model and flag ids outside the catalogue')
    group.add_argument('--migrate-models', action='store_true',
                       help='Rewrite chats with unknown models to the fallback model')
    parser.add_argument('--to', metavar='MODEL',
                        help='Replacement model id (default: FALLBACK_MODEL)')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    init_firebase(
        config.firebase_credentials_path,
        database_id=config.firestore_database_id,
        storage_bucket=config.storage_bucket,
    )

    try:
        if args.find_invalid_models:
            counts = count_models()
            invalid = find_invalid_models()
            print("Models in database:")
            print("-" * 50)
            for model, count in sorted(counts.items(), key=lambda item: -item[1]):
                marker = "← INVALID" if model in invalid else ""
                print(f"  {model or '(none)':45} {count:6} {marker}")
            print(f"\n{sum(invalid.values())} chat(s) use an unknown model")
        else:
            replacement = args.to or config.fallback_model
            updated = migrate_models(replacement)
            print(f"✓ Updated {updated} chat(s) to {replacement}")
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    except ChatStoreError as e:
        print(f"Error: Firestore request failed: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Migration CLI for moving a source video catalog to Mux.

Validates a source credential, enumerates the catalog, skips videos that
already have a Mux asset, and submits the rest. Completion is reported later
by the Mux webhook to the running API server.

Usage:
    python scripts/migrate_videos.py --platform s3 --environment qa --credential cred.json
    python scripts/migrate_videos.py ... --discover-only     # Record candidates, submit nothing
    python scripts/migrate_videos.py ... --validate-only     # Just check the credential
    python scripts/migrate_videos.py ... --resume JOB_ID     # Continue from the saved cursor
    python scripts/migrate_videos.py --environment qa --status JOB_ID
    python scripts/migrate_videos.py --environment qa --abandon JOB_ID
    python scripts/migrate_videos.py --config                # Show configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from collections import Counter
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from truckload.config import ENVIRONMENTS, get_settings
from truckload.destination import DestinationConfig
from truckload.exceptions import InvalidCredential, MigrationError
from truckload.migration import JobRunner, JobStatusTracker
from truckload.models import Credential
from truckload.providers import PLATFORM_IDS
from truckload.store import StorePool

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def load_credential(value: str, platform: str) -> Credential:
    """
    Load a credential from a JSON file path or an inline JSON object.

    Expected keys: publicKey, secretKey, additionalMetadata.
    """
    path = Path(value)
    raw = path.read_text() if path.exists() else value
    data = json.loads(raw)

    metadata = dict(data.get("additionalMetadata") or {})
    metadata.setdefault("platformId", platform)
    return Credential(
        public_key=data["publicKey"],
        secret_key=data.get("secretKey"),
        metadata=metadata,
    )


def show_config():
    """Display current configuration."""
    settings = get_settings()

    print("\n=== Truckload Configuration ===\n")
    print(f"Store backend: {settings.store_backend}")
    if settings.store_backend == "sqlite":
        for environment in ENVIRONMENTS:
            print(f"  {environment}: {settings.sqlite_path(environment)}")
    else:
        for environment in ENVIRONMENTS:
            url, key = settings.supabase_credentials(environment)
            print(f"  {environment}: {url or 'Not set'} (key {'***' + key[-4:] if key else 'Not set'})")
    print(f"\nMux:")
    print(f"  Token id: {'***' + settings.mux_token_id[-4:] if settings.mux_token_id else 'Not set'}")
    print(f"  Webhook secret: {'set' if settings.mux_webhook_secret else 'Not set'}")
    print(f"\nTuning:")
    print(f"  Submit attempts: {settings.submit_max_attempts}")
    print(f"  Concurrent submissions: {settings.max_concurrent_submissions}")
    print(f"  Results per enumeration pass: {settings.page_result_cap}")
    print(f"\nPlatforms: {', '.join(PLATFORM_IDS)}")


def show_status(stores: StorePool, environment: str, job_id: str):
    """Display a job and the latest status of each of its videos."""
    store = stores.get(environment)
    job = store.get_job(job_id)
    if job is None:
        print(f"Job not found in {environment}: {job_id}")
        sys.exit(1)

    snapshot = JobStatusTracker(store).snapshot(job_id)
    counts = Counter(report.status.value for report in snapshot.values())

    print(f"\n=== Job {job.job_id} ===\n")
    print(f"Platform: {job.platform_id}")
    print(f"Environment: {job.environment}")
    print(f"State: {job.state}")
    if job.error:
        print(f"Error: {job.error}")
    print(f"Discovered: {job.discovered}")
    print(f"Dispatched: {job.dispatched}")
    print(f"\nBy status:")
    for status, count in sorted(counts.items()):
        print(f"  {status:<12} {count}")


def run_migration(
    stores: StorePool,
    platform: str,
    environment: str,
    credential: Credential,
    config: DestinationConfig,
    discover_only: bool = False,
    resume: str = None,
):
    """Run a job to the end of enumeration and submission."""
    print("\n" + "=" * 60)
    print("Video Migration")
    print("=" * 60)
    print(f"Mode: {'DISCOVER ONLY' if discover_only else 'MIGRATE'}")
    print(f"Platform: {platform}")
    print(f"Environment: {environment}")
    if resume:
        print(f"Resuming job: {resume}")
    print()

    runner = JobRunner(stores)
    if resume:
        stats = asyncio.run(
            runner.resume(resume, credential, environment, config, discover_only=discover_only)
        )
    else:
        stats = asyncio.run(
            runner.start(platform, credential, environment, config, discover_only=discover_only)
        )

    print("\n" + "=" * 60)
    print("MIGRATION DISPATCHED" if stats.state == "completed" else f"JOB {stats.state.upper()}")
    print("=" * 60)
    print(stats)

    if stats.errors:
        print("\nErrors:")
        for error in stats.errors[:10]:
            print(f"  - {error}")
        if len(stats.errors) > 10:
            print(f"  ... and {len(stats.errors) - 10} more errors")

    if not discover_only and stats.submitted:
        print("\nSubmitted videos complete when Mux calls /api/webhooks/mux")
    if stats.state == "failed":
        print(f"\nResume with: --resume {stats.job_id}")
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Migrate a video catalog from a source platform to Mux",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/migrate_videos.py --platform s3 -e qa --credential s3.json
  python scripts/migrate_videos.py --platform azure -e dev --credential azure.json --discover-only
  python scripts/migrate_videos.py --platform s3 -e qa --credential s3.json --resume JOB_ID
  python scripts/migrate_videos.py -e qa --status JOB_ID
  python scripts/migrate_videos.py -e qa --abandon JOB_ID
        """,
    )

    parser.add_argument("--platform", choices=PLATFORM_IDS, help="Source platform")
    parser.add_argument(
        "--environment", "-e",
        choices=ENVIRONMENTS,
        default="dev",
        help="Target environment (default: dev)",
    )
    parser.add_argument(
        "--credential",
        help="Credential JSON file or inline JSON: {publicKey, secretKey, additionalMetadata}",
    )
    parser.add_argument(
        "--discover-only",
        action="store_true",
        help="Record candidates in the store without submitting them",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate the credential and exit",
    )
    parser.add_argument("--resume", metavar="JOB_ID", help="Continue a failed or interrupted job")
    parser.add_argument("--status", metavar="JOB_ID", help="Show job status and exit")
    parser.add_argument("--abandon", metavar="JOB_ID", help="Abandon a job and exit")
    parser.add_argument("--encoding-tier", choices=["baseline", "smart"], default="smart")
    parser.add_argument("--max-resolution", choices=["1080p", "1440p", "2160p"], default="1080p")
    parser.add_argument("--captions", action="store_true", help="Auto-generate English captions")
    parser.add_argument("--playback-policy", choices=["public", "signed"], default="public")
    parser.add_argument(
        "--config",
        action="store_true",
        help="Show current configuration and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.config:
        show_config()
        return

    stores = StorePool()
    try:
        if args.status:
            show_status(stores, args.environment, args.status)
            return

        if args.abandon:
            try:
                abandoned = JobRunner(stores).abandon(args.abandon, args.environment)
            except MigrationError as e:
                print(f"Error: {e}")
                sys.exit(1)
            print(f"Job {args.abandon} {'abandoned' if abandoned else 'already finished'}")
            return

        if not args.platform or not args.credential:
            print("Error: --platform and --credential are required")
            sys.exit(1)

        credential = load_credential(args.credential, args.platform)

        if args.validate_only:
            try:
                JobRunner(stores).validate(args.platform, credential, args.environment)
            except InvalidCredential as e:
                print(f"Credential rejected: {e}")
                sys.exit(1)
            print("Credential OK")
            return

        config = DestinationConfig(
            encoding_tier=args.encoding_tier,
            max_resolution_tier=args.max_resolution,
            auto_generate_captions=args.captions,
            playback_policy=[args.playback_policy],
        )
        run_migration(
            stores,
            platform=args.platform,
            environment=args.environment,
            credential=credential,
            config=config,
            discover_only=args.discover_only,
            resume=args.resume,
        )

    except InvalidCredential as e:
        print(f"\nCredential rejected: {e}")
        sys.exit(1)

    except ValueError as e:
        print(f"\nConfiguration error: {e}")
        print("\nMake sure required environment variables are set:")
        print("  - MUX_TOKEN_ID and MUX_TOKEN_SECRET (for submission)")
        print("  - SUPABASE_URL_<ENV> and SUPABASE_KEY_<ENV> (when STORE_BACKEND=supabase)")
        sys.exit(1)

    except Exception as e:
        print(f"\nMigration failed: {e}")
        logger.exception("Migration error")
        sys.exit(1)

    finally:
        stores.close_all()


if __name__ == "__main__":
    main()

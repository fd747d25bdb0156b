"""Gmail invoice sync scheduler - per-user scans, post-authorization trigger and periodic sweep."""

import logging
import sys
from pathlib import Path

import modal

# Create Modal app
app = modal.App("mailinvoicer-sync")

# Create image with all dependencies
image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "psycopg[binary]==3.2.3",
        "boto3==1.41.2",
        "openai==1.59.5",
        "pydantic==2.12.4",
        "requests==2.32.3",
    )
    .add_local_dir(Path(__file__).parent.parent / "src" / "mailinvoicer", "/root/mailinvoicer")
)

# Modal secrets
secrets = [modal.Secret.from_name("mailinvoicer-secrets")]

logger = logging.getLogger(__name__)


@app.function(
    image=image,
    secrets=secrets,
    timeout=900,
)
def sync_user(user_id: str, mode: str = "incremental") -> dict:
    """Scan one user's mailbox.

    Args:
        user_id: User to scan
        mode: "initial" (one year back) or "incremental"

    Returns:
        dict: Scan summary, or {"error": ...} if the scan could not run
    """
    sys.path.insert(0, "/root")

    from mailinvoicer.config import Config
    from mailinvoicer.sync import run_sync

    logging.basicConfig(level=logging.INFO)

    config = Config.from_env()
    logger.info(f"Syncing user {user_id} ({mode})")
    return run_sync(user_id, mode, config)


@app.function(
    image=image,
    secrets=secrets,
    timeout=120,
)
def connect_gmail(user_id: str, code: str) -> dict:
    """Finish an OAuth authorization and kick off the initial scan.

    The initial scan is spawned and not awaited.
    """
    sys.path.insert(0, "/root")

    from mailinvoicer.config import Config
    from mailinvoicer.sync import connect_account

    logging.basicConfig(level=logging.INFO)

    config = Config.from_env()
    credential = connect_account(user_id, code, config)

    sync_user.spawn(user_id=user_id, mode="initial")
    logger.info(f"Spawned initial sync for user {user_id}")

    return {"connected": True, "email": credential.mail_address}


@app.function(
    image=image,
    secrets=secrets,
    schedule=modal.Period(hours=6),
    timeout=7200,  # 2 hours for the full sweep
)
def scheduler():
    """Periodic sweep - one incremental scan per connected user, in parallel.

    Workflow:
    1. Fetch all connected users from database
    2. Spawn one sync_user call per user
    3. Wait for the calls and aggregate their summaries
    """
    sys.path.insert(0, "/root")

    from mailinvoicer.config import Config
    from mailinvoicer.storage.database import DatabaseClient

    logging.basicConfig(level=logging.INFO)

    logger.info("=" * 80)
    logger.info("SCHEDULER STARTED")
    logger.info("=" * 80)

    config = Config.from_env()
    db = DatabaseClient(config.database_url)

    # Step 1: Fetch all connected users
    logger.info("[1] Fetching connected users from database...")
    try:
        credentials = db.get_all_credentials()
    finally:
        db.close()
    logger.info(f"Found {len(credentials)} connected users")

    if not credentials:
        logger.info("No users to sync")
        return {"message": "No connected users"}

    # Step 2: Spawn one scan per user
    logger.info("[2] Spawning sync calls...")
    calls = []
    for credential in credentials:
        call = sync_user.spawn(user_id=credential.user_id, mode="incremental")
        calls.append((credential.user_id, call))

    # Step 3: Collect results, isolating per-user failures
    logger.info("[3] Waiting for sync calls to complete...")
    results = []
    for user_id, call in calls:
        try:
            result = call.get()
        except Exception as e:
            logger.error(f"Sync for user {user_id} failed: {e}")
            result = {"error": str(e)}
        results.append({"user_id": user_id, **result})

    failed = [r for r in results if "error" in r]
    total_emails = sum(r.get("total_emails", 0) for r in results)
    total_invoices = sum(r.get("invoices_found", 0) for r in results)
    total_processed = sum(r.get("processed", 0) for r in results)

    logger.info("=" * 80)
    logger.info("SCHEDULER COMPLETE")
    logger.info("=" * 80)
    logger.info(f"Users synced: {len(results) - len(failed)}/{len(results)}")
    logger.info(f"Emails found: {total_emails}")
    logger.info(f"Attachments classified: {total_processed}")
    logger.info(f"Invoices found: {total_invoices}")

    return {
        "users_synced": len(results) - len(failed),
        "users_failed": len(failed),
        "total_emails": total_emails,
        "total_processed": total_processed,
        "total_invoices_found": total_invoices,
        "results": results,
    }


@app.local_entrypoint()
def main(user_id: str = "", mode: str = "incremental"):
    """Local entrypoint for testing.

    Args:
        user_id: Sync a single user (runs the full sweep when empty)
        mode: Scan mode for a single-user sync
    """
    if user_id:
        print(f"Running sync for user {user_id} ({mode})")
        result = sync_user.remote(user_id=user_id, mode=mode)
    else:
        print("Running scheduler sweep")
        result = scheduler.remote()
    print(f"\nResult: {result}")

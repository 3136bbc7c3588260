#!/usr/bin/env python3
"""
Rate Limit Cleanup Script

Deletes rate limit records whose newest request is older than the
retention period (CLEANUP_RETENTION_DAYS, default 30).

USAGE:
    # From the project root, with the same environment as the API
    python scripts/run_cleanup.py

    # Typical cron entry (daily at 03:00)
    0 3 * * * cd /srv/gatekeeper && STORE_BACKEND=sql python scripts/run_cleanup.py

Exit status is 0 on success and 1 when the store could not be cleaned.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from gatekeeper.core.config import settings
from gatekeeper.core.errors import CleanupAppError
from gatekeeper.core.logging import configure_logging
from gatekeeper.services.cleanup_service import run_cleanup


def main() -> int:
    configure_logging(settings.log)
    try:
        result = run_cleanup(settings)
    except CleanupAppError as exc:
        print(f"Cleanup failed: {exc.message}", file=sys.stderr)
        return 1

    print(
        f"Deleted {result.records_deleted} rate limit records "
        f"idle since before {result.threshold_ms} ms."
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict

from grnledger.application.container import build_container
from grnledger.config import get_app_paths, get_settings
from grnledger.logging_config import setup_logging

log = logging.getLogger(__name__)


def main() -> int:
    """Open (and migrate) the ledger database, then report its health."""
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    container = build_container(paths.db_path, get_settings())
    report = container.operations.run_health_check()
    log.info("startup_health ok=%s open_grns=%s", report.ok, report.open_grns)

    print(json.dumps(asdict(report), ensure_ascii=False, indent=2, default=str))
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())

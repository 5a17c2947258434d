"""catalogworker entry point.

Run the import scheduler (default):
    python -m catalogworker serve

Run a one-off import:
    python -m catalogworker import https://example.com/products.csv --owner 42
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def _import_once(csv_url: str, owner_id: int) -> int:
    from .config import get_config
    from .importer.orchestrator import run_import
    from .service import load_catalog_backend

    config = get_config()
    catalog = load_catalog_backend(config.catalog_backend)
    result = await run_import(csv_url, owner_id, catalog, config.importer)

    print(
        json.dumps(
            {
                "imported": result.imported,
                "total_processed": result.total_processed,
                "errors": result.error_messages(config.importer.error_sample_size),
                "error_count": len(result.errors),
                "execution_time": result.execution_time,
                "success_rate": result.success_rate,
            },
            indent=2,
        )
    )
    return 0 if not result.errors else 1


def main():
    """CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="catalogworker - scheduled CSV product imports")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL env or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("serve", help="Run the import scheduler until interrupted")

    import_parser = subparsers.add_parser("import", help="Import a CSV once and exit")
    import_parser.add_argument("url", help="CSV or Google Sheets URL")
    import_parser.add_argument("--owner", type=int, required=True, help="Catalog owner id")

    args = parser.parse_args()

    from .config import get_config

    setup_logging(args.log_level or get_config().log_level)
    logger = logging.getLogger(__name__)

    if args.command == "import":
        try:
            sys.exit(asyncio.run(_import_once(args.url, args.owner)))
        except KeyboardInterrupt:
            logger.info("Import interrupted")
            sys.exit(130)
    else:
        from .service import serve

        asyncio.run(serve())


if __name__ == "__main__":
    main()

"""CLI job to run discovery, scraping or reporting for one audit."""

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

from napaudit.core import db
from napaudit.core.config import get_settings
from napaudit.discovery.stream import collect_discovery
from napaudit.extraction.scrape import run_scrape
from napaudit.reporting.report import build_report

logger = logging.getLogger(__name__)


def run_discover(*, business_id: Optional[str], audit_id: Optional[str], include_website: bool) -> Dict[str, Any]:
    settings = get_settings()
    db.init_pool(settings=settings)
    data = collect_discovery(
        settings,
        db,
        business_id=business_id,
        audit_id=audit_id,
        include_website=include_website,
    )
    logger.info("Discovery kept %d URLs via %s", len(data["urls"]), data["provider"])
    return data


def run_scrape_job(*, business_id: Optional[str], audit_id: str, urls: Optional[list], use_discovery: bool) -> Dict[str, Any]:
    settings = get_settings()
    db.init_pool(settings=settings)
    result = run_scrape(
        settings,
        db,
        business_id=business_id,
        audit_id=audit_id,
        urls=urls,
        use_discovery=use_discovery,
    )
    logger.info("Scrape stored %d observations", len(result.observations))
    return result.to_dict()


def run_report(*, business_id: str, audit_id: str, include_maps: bool) -> Dict[str, Any]:
    db.init_pool(settings=get_settings())
    reference = db.get_reference_record(business_id)
    report = build_report(reference, db.list_observations(audit_id), include_maps=include_maps)
    logger.info("Overall presence score for %s: %s", business_id, report["scoring"]["overallScore"])
    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a NAP audit step")
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover = subparsers.add_parser("discover", help="Discover candidate listing URLs")
    discover.add_argument("--business-id", dest="business_id", help="Business identifier")
    discover.add_argument("--audit-id", dest="audit_id", help="Audit run to snapshot into")
    discover.add_argument("--include-website", dest="include_website", action="store_true", help="Keep the business website")

    scrape = subparsers.add_parser("scrape", help="Scrape URLs and score them against the reference")
    scrape.add_argument("--business-id", dest="business_id", help="Business identifier")
    scrape.add_argument("--audit-id", dest="audit_id", required=True, help="Audit run identifier")
    scrape.add_argument("--url", dest="urls", action="append", help="URL to scrape (repeatable)")
    scrape.add_argument(
        "--use-discovery",
        dest="use_discovery",
        action="store_true",
        help="Scrape the latest discovery snapshot when no --url is given",
    )

    report = subparsers.add_parser("report", help="Build the presence report")
    report.add_argument("--business-id", dest="business_id", required=True, help="Business identifier")
    report.add_argument("--audit-id", dest="audit_id", required=True, help="Audit run identifier")
    report.add_argument("--include-maps", dest="include_maps", action="store_true", help="Include maps providers")
    return parser


def main(argv: Optional[list] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    if args.command == "discover":
        data = run_discover(business_id=args.business_id, audit_id=args.audit_id, include_website=args.include_website)
    elif args.command == "scrape":
        data = run_scrape_job(
            business_id=args.business_id,
            audit_id=args.audit_id,
            urls=args.urls,
            use_discovery=args.use_discovery,
        )
    else:
        data = run_report(business_id=args.business_id, audit_id=args.audit_id, include_maps=args.include_maps)

    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Distribute a locally built image to one or more cloud container registries.

Credentials for each target provider are resolved from the configured source
(environment, secrets-store, vault), the remote repositories are provisioned
if needed, and the image is pushed to every target in the order given. The
first failure stops the run.

Workflow:
1. Parse the --target specifications
2. Resolve and validate credentials for each target provider
3. Build one registry per target
4. Load the source image once and push it to every registry (--apply only)
5. Write a JSON report and a table of the registry -> image URI map

Usage examples:
  # Show what would be pushed (dry-run)
  python distribute_image.py --source myapp:1.0 --target provider=aws,region=us-east-1,repository=myapp

  # Push to ECR and Artifact Registry
  python distribute_image.py --source myapp:1.0 \\
    --target provider=aws,region=us-east-1,repository=myapp \\
    --target provider=gcp,region=us-central1,repository=myapp,project=myproj --apply

  # Push to ACR
  python distribute_image.py --source myapp:1.0 \\
    --target provider=azure,region=eastus,repository=myapp,resource_group=rg-apps,registry=myappacr --apply
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from cloud_deploy.config_manager import config_manager
from cloud_deploy.context import OperationContext
from cloud_deploy.credentials import CredentialManager, Provider, validate_credentials
from cloud_deploy.error_utils import ActionableError, ConfigurationError
from cloud_deploy.image_reference import parse_image_reference
from cloud_deploy.logging_utils import get_logger, log_exception, setup_logging
from cloud_deploy.registry import Distributor, build_registry
from cloud_deploy.report_utils import render_distribution_table, save_json, save_table_and_json
from cloud_deploy.skopeo_client import SkopeoClient

logger = get_logger(__name__)

TARGET_KEYS = ("provider", "region", "repository", "image", "project", "resource_group", "registry", "subscription")


def parse_target(spec: str) -> Dict[str, str]:
    """Parse "provider=aws,region=us-east-1,repository=myapp" into a dict.

    Raises:
        ConfigurationError: Unknown key, missing provider/region/repository or malformed pair
    """
    target = {}
    for pair in spec.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        key = key.strip().lower().replace("-", "_")
        if not sep or not value.strip():
            raise ConfigurationError(f"malformed target option '{pair}' in '{spec}'", details={"target": spec})
        if key not in TARGET_KEYS:
            raise ConfigurationError(
                f"unknown target option '{key}' in '{spec}'",
                suggestions=[f"Valid options: {', '.join(TARGET_KEYS)}"],
                details={"target": spec},
            )
        target[key] = value.strip()

    for required in ("provider", "region", "repository"):
        if required not in target:
            raise ConfigurationError(f"target '{spec}' is missing '{required}'", details={"target": spec})
    target["provider"] = Provider.from_value(target["provider"]).value
    return target


class ImageDistributionRun:
    """Resolves credentials, builds registries and runs one distribution."""

    def __init__(self, source: str, tag: str, targets: List[Dict[str, str]],
                 credential_manager: CredentialManager, skopeo_client: SkopeoClient):
        self.source = source
        self.tag = tag
        self.targets = targets
        self.credential_manager = credential_manager
        self.skopeo_client = skopeo_client

    def build_distributor(self, ctx: OperationContext) -> Distributor:
        distributor = Distributor(self.source, self.skopeo_client)
        resolved = {}
        for target in self.targets:
            provider = target["provider"]
            if provider not in resolved:
                credentials = self.credential_manager.get_credentials(provider, ctx)
                validate_credentials(credentials, provider)
                resolved[provider] = credentials
            distributor.add_registry(
                build_registry(
                    provider,
                    resolved[provider],
                    region=target["region"],
                    repository=target["repository"],
                    tag=self.tag,
                    image_name=target.get("image"),
                    project_id=target.get("project"),
                    resource_group=target.get("resource_group"),
                    registry_name=target.get("registry"),
                    subscription_id=target.get("subscription"),
                )
            )
        return distributor

    def run(self, dry_run: bool, ctx: Optional[OperationContext] = None) -> Dict:
        """Execute the run and return the report (never partial: image_uris is empty on failure)."""
        ctx = ctx or OperationContext()
        report = {
            "source": self.source,
            "tag": self.tag,
            "dry_run": dry_run,
            "targets": self.targets,
            "image_uris": {},
            "status": "pending",
        }

        distributor = self.build_distributor(ctx)
        if dry_run:
            for registry in distributor.registries:
                logger.info(f"  Would push {self.source} to {registry!r} with tag {self.tag}")
            report["status"] = "dry-run"
            return report

        report["image_uris"] = distributor.distribute(ctx)
        report["status"] = "success"
        return report


def parse_arguments(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Distribute a local image to cloud container registries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dry-run against ECR
  python distribute_image.py --source myapp:1.0 --target provider=aws,region=us-east-1,repository=myapp

  # Push to ECR and Artifact Registry
  python distribute_image.py --source myapp:1.0 \\
    --target provider=aws,region=us-east-1,repository=myapp \\
    --target provider=gcp,region=us-central1,repository=myapp,project=myproj --apply
        """,
    )

    parser.add_argument(
        "--source",
        required=True,
        help="Source image (e.g. myapp:1.0); read with the configured distribution.source_transport",
    )

    parser.add_argument(
        "--tag",
        help="Tag to push to every registry (default: the source image's tag)",
    )

    parser.add_argument(
        "--target",
        action="append",
        required=True,
        help="Target registry as comma-separated key=value pairs "
        "(provider, region, repository, image, project, resource_group, registry, subscription). Repeatable.",
    )

    parser.add_argument(
        "--apply",
        action="store_true",
        help="Actually push images (default: dry-run showing what would be pushed)",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        help="Overall deadline in seconds for credential resolution and distribution",
    )

    parser.add_argument(
        "--output",
        help="Output file for the JSON report; a .txt table is written next to it (default: reports/distribution-report.json)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging(config_manager.get_log_level())
    args = parse_arguments(argv)
    dry_run = not args.apply
    output_file = args.output or "reports/distribution-report.json"

    try:
        targets = [parse_target(spec) for spec in args.target]
        tag = args.tag or parse_image_reference(args.source).tag
    except ActionableError as e:
        logger.error(str(e))
        return 2

    # Print mode banner
    logger.info("=" * 60)
    if dry_run:
        logger.info("   IMAGE DISTRIBUTION - DRY RUN MODE (default)")
        logger.info("   No images will be pushed. Use --apply to execute.")
    else:
        logger.info("   IMAGE DISTRIBUTION - APPLY MODE")
        logger.warning("   Images WILL be pushed to the target registries!")
    logger.info("=" * 60)
    logger.info(f"Source image:       {args.source}")
    logger.info(f"Tag:                {tag}")
    logger.info(f"Credential source:  {config_manager.get_credential_source()}")
    for target in targets:
        logger.info(f"Target:             {target['provider']} {target['region']}/{target['repository']}")
    logger.info("")

    run = ImageDistributionRun(
        source=args.source,
        tag=tag,
        targets=targets,
        credential_manager=CredentialManager.from_config(config_manager),
        skopeo_client=SkopeoClient(config_manager),
    )

    ctx = OperationContext(timeout=args.timeout)
    try:
        report = run.run(dry_run=dry_run, ctx=ctx)
    except ActionableError as e:
        logger.error(str(e))
        save_json(output_file, {
            "source": args.source,
            "tag": tag,
            "dry_run": dry_run,
            "targets": targets,
            "image_uris": {},
            "status": "failed",
            "error": e.message,
            "category": e.category.value,
        })
        return 1
    except KeyboardInterrupt:
        ctx.cancel()
        logger.warning("Distribution interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Distribution failed: {e}")
        log_exception(logger, "Error in distribution", exc_info=e)
        return 1

    logger.info("")
    logger.info("=" * 60)
    logger.info("   DISTRIBUTION SUMMARY")
    logger.info("=" * 60)
    table = render_distribution_table(report)
    for line in table.splitlines():
        logger.info(line)
    save_table_and_json(str(Path(output_file).with_suffix("")), table, report, timestamp=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())

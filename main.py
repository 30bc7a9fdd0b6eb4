#!/usr/bin/env python3
"""
Command line entry point for the clinic data layer.
"""

import asyncio
import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from clinic_data import __version__
from clinic_data.archimed.service import ClinicDataService
from clinic_data.archimed.client import ArchimedError
from clinic_data.scrapers import ScraperError, update_snapshot_photos, import_image_directory
from clinic_data.storage.snapshots import SnapshotError, SnapshotLoader
from clinic_data.utils.config import Config, load_config, apply_env_overrides, validate_config
from clinic_data.utils.logger import setup_logging, log_system_info
from clinic_data.utils.monitoring import initialize_monitoring


class ClinicDataApp:
    """Runs one command against the data layer."""

    def __init__(self):
        self.service: Optional[ClinicDataService] = None
        self.logger = logging.getLogger(__name__)

    def load(self, config_path: str, explicit: bool) -> Config:
        if Path(config_path).exists():
            return load_config(config_path)
        if explicit:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config = Config()
        apply_env_overrides(config)
        validate_config(config)
        return config

    async def run(self, args) -> int:
        try:
            config = self.load(args.config, args.config_explicit)
            setup_logging(asdict(config.logging), enable_json=config.logging.json)
            log_system_info()

            monitor = initialize_monitoring(config.monitoring.metrics_enabled,
                                            config.monitoring.prometheus_port)
            monitor.metrics.start_prometheus_server()

            if args.command == 'import-photos':
                snapshot = Path(args.snapshot) if args.snapshot else SnapshotLoader(config.snapshots).secondary_path
                update_snapshot_photos(Path(args.html), snapshot)
                return 0

            if args.command == 'import-images':
                snapshot = Path(args.snapshot) if args.snapshot else SnapshotLoader(config.snapshots).secondary_path
                import_image_directory(Path(args.images), snapshot)
                return 0

            self.service = ClinicDataService.from_config(config)

            if args.dry_run:
                await self._dry_run()
                return 0

            await self.service.initialize()
            result = await self._run_data_command(args)
            if result is not None:
                self._emit(result, args.output)

            # Let background revalidation finish so the cache holds fresh data
            await self.service.wait_for_refreshes()
            self.logger.info(f"Sources used: {monitor.get_summary()['last_sources']}")
            return 0

        except (ScraperError, SnapshotError, FileNotFoundError, ValueError) as e:
            self.logger.error(str(e))
            return 1
        except ArchimedError as e:
            self.logger.error(f"API error: {e}")
            return 1

        finally:
            if self.service:
                await self.service.close()

    async def _run_data_command(self, args):
        if args.command == 'doctors':
            if args.with_services:
                return await self.service.get_doctors_with_services()
            return await self.service.get_doctors()

        if args.command == 'services':
            if args.with_doctors:
                return await self.service.get_services_with_doctors()
            return await self.service.get_services()

        if args.command == 'branches':
            return await self.service.get_branches()

        if args.command == 'prefetch':
            await self.service.prefetch_all()
            self.logger.info(f"Prefetched {len(self.service.get_doctors_cache())} doctors, "
                             f"{len(self.service.get_services_cache())} services")
            return None

        raise ValueError(f"Unknown command: {args.command}")

    def _emit(self, result, output: Optional[str]):
        text = json.dumps(result, ensure_ascii=False, indent=2)
        if output:
            Path(output).write_text(text + '\n', encoding='utf-8')
            self.logger.info(f"Wrote {len(result)} records to {output}")
        else:
            print(text)

    async def _dry_run(self):
        """Check that the cache backend and the API answer."""
        self.logger.info("Testing cache backend...")
        if await self.service.cache.write('dry_run_probe', [1]):
            await self.service.cache.invalidate('dry_run_probe')
            self.logger.info("✓ Cache backend writable")
        else:
            self.logger.error("✗ Cache backend not writable")

        self.logger.info("Testing Archimed API...")
        try:
            page = await self.service.client.get_page('/doctors', {'page': 1, 'limit': 1})
            self.logger.info(f"✓ Archimed API reachable, {page.total} doctors reported")
        except ArchimedError as e:
            self.logger.error(f"✗ Archimed API check failed: {e}")

        self.logger.info("Dry run completed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Clinic data access layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py doctors                              # Doctors from the first available source
  python main.py doctors --with-services -o out.json  # Doctors linked to their services
  python main.py services --with-doctors              # Services linked to their doctors
  python main.py prefetch                             # Warm the persistent cache
  python main.py import-photos --html tmp/prodoctorov.html
  python main.py import-images --images public/img_doctors
  python main.py --dry-run doctors                    # Test configuration only
        """
    )

    parser.add_argument('--config', default=None,
                        help='Path to configuration file (default: config.yaml if present)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Test cache and API connectivity without fetching data')
    parser.add_argument('--version', action='version', version=f'Clinic Data {__version__}')

    subparsers = parser.add_subparsers(dest='command', required=True)

    doctors = subparsers.add_parser('doctors', help='Print the doctors list')
    doctors.add_argument('--with-services', action='store_true', help='Attach matching services')
    doctors.add_argument('-o', '--output', help='Write JSON to this file instead of stdout')

    services = subparsers.add_parser('services', help='Print the services list')
    services.add_argument('--with-doctors', action='store_true', help='Attach matching doctors')
    services.add_argument('-o', '--output', help='Write JSON to this file instead of stdout')

    branches = subparsers.add_parser('branches', help='Print the clinic branches')
    branches.add_argument('-o', '--output', help='Write JSON to this file instead of stdout')

    subparsers.add_parser('prefetch', help='Warm doctors and services caches')

    photos = subparsers.add_parser('import-photos', help='Copy photo URLs from a saved ProDoctorov page')
    photos.add_argument('--html', default='tmp/prodoctorov.html', help='Saved HTML page')
    photos.add_argument('--snapshot', help='Snapshot to update (default: configured secondary snapshot)')

    images = subparsers.add_parser('import-images', help='Import doctors from a photo directory')
    images.add_argument('--images', default='public/img_doctors', help='Directory with doctor photos')
    images.add_argument('--snapshot', help='Snapshot to update (default: configured secondary snapshot)')

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    args.config_explicit = args.config is not None
    args.config = args.config or 'config.yaml'
    if not hasattr(args, 'output'):
        args.output = None

    app = ClinicDataApp()
    try:
        return asyncio.run(app.run(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())

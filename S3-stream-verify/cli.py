import os
import sys
import logging
import argparse
import asyncio
import functools

# Required: Use uvloop for better performance
import uvloop
asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

# Add the current directory to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from configuration import (
    BYTES_PER_KB,
    DEFAULT_CHUNK_COUNT,
    DEFAULT_CHUNK_SIZE_KB,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_STORAGE_TYPE,
    EXIT_FAILED,
    EXIT_PASSED,
    EXIT_SKIPPED,
    UPLOAD_READ_TIMEOUT_SECONDS,
    resolve_bucket_name,
    resolve_region,
)

# Set up logging (only if not already configured)
if not logging.root.handlers:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


class StreamVerifyCLI:
    """CLI interface for the S3 stream verification harness."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self):
        """Create the main argument parser."""
        parser = argparse.ArgumentParser(
            description='S3 chunked download integrity check',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Upload 2 MiB, read it back in 4 chunks of 512 KiB with a disconnect after each
  S3_BUCKET=my-bucket python cli.py verify

  # Same against Cloudflare R2 with 8 chunks of 256 KiB
  python cli.py verify --storage r2 --bucket my-bucket --chunk-size-kb 256 --chunk-count 8

  # Check that the bucket exists
  python cli.py probe --bucket my-bucket

  # Remove an object left behind by an interrupted run
  python cli.py cleanup --bucket my-bucket --object-key 2b0c6f0e-...
            """
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        def add_common(sub):
            sub.add_argument('--storage', choices=['r2', 's3'], default=DEFAULT_STORAGE_TYPE,
                             help=f'Storage type to use (default: {DEFAULT_STORAGE_TYPE})')
            sub.add_argument('--bucket', type=str, default=None,
                             help='Bucket name (default: $S3_BUCKET, then $BUCKET_NAME)')
            sub.add_argument('--region', type=str, default=None,
                             help='Region (default: $AWS_REGION, then $AWS_DEFAULT_REGION, then us-east-1)')

        # Verify command
        verify_parser = subparsers.add_parser('verify', help='Run the integrity check')
        add_common(verify_parser)
        verify_parser.add_argument('--chunk-size-kb', type=int, default=DEFAULT_CHUNK_SIZE_KB,
                                   help=f'Chunk size in KiB (default: {DEFAULT_CHUNK_SIZE_KB})')
        verify_parser.add_argument('--chunk-count', type=int, default=DEFAULT_CHUNK_COUNT,
                                   help=f'Number of chunks (default: {DEFAULT_CHUNK_COUNT})')
        verify_parser.add_argument('--no-disconnect', action='store_true',
                                   help='Do not drop the connection between chunks')
        verify_parser.add_argument('--seed', type=int, default=None,
                                   help='Seed for the payload generator')
        verify_parser.add_argument('--output-dir', type=str, default=DEFAULT_OUTPUT_DIR,
                                   help=f'Directory for chunk records (default: {DEFAULT_OUTPUT_DIR})')
        verify_parser.add_argument('--no-records', action='store_true',
                                   help='Do not write chunk records to Parquet')

        # Probe command
        probe_parser = subparsers.add_parser('probe', help='Check that the bucket exists')
        add_common(probe_parser)

        # Cleanup command
        cleanup_parser = subparsers.add_parser('cleanup', help='Delete a leftover test object')
        add_common(cleanup_parser)
        cleanup_parser.add_argument('--object-key', type=str, required=True,
                                    help='Key of the object to delete')

        return parser

    def _storage_factory(self, args):
        from common.storage_factory import create_storage_system
        return functools.partial(create_storage_system, args.storage)

    async def run_verify(self, args):
        """Run the integrity check."""
        from algorithms.integrity_check import IntegrityVerifier
        from persistence.parquet import ParquetPersistence

        logger.info("=== Stream Integrity Check ===")

        persistence = None if args.no_records else ParquetPersistence(args.output_dir)
        verifier = IntegrityVerifier(
            storage_factory=self._storage_factory(args),
            bucket_name=args.bucket,
            region=args.region,
            chunk_size=args.chunk_size_kb * BYTES_PER_KB,
            chunk_count=args.chunk_count,
            disconnect_between_chunks=not args.no_disconnect,
            persistence=persistence,
            seed=args.seed,
        )
        result = await verifier.run()

        if persistence is not None:
            records_file = persistence.save_to_file("verification")
            if records_file:
                logger.info(f"Chunk records saved to: {records_file}")

        if result.summary:
            summary = result.summary
            logger.info(
                f"Chunks matched: {summary['chunks_matched']}/{args.chunk_count}, "
                f"bytes read: {summary['total_bytes']}, "
                f"reconnects: {summary['reconnects']}, "
                f"avg latency: {summary['avg_latency_ms']:.1f} ms"
            )
        if result.cleanup_error:
            logger.warning(f"Object {result.object_key} may be left behind: {result.cleanup_error}")

        if result.passed:
            logger.info("Integrity check passed")
            return EXIT_PASSED
        if result.skipped:
            logger.warning(f"Integrity check skipped: {result.message}")
            return EXIT_SKIPPED
        logger.error(f"Integrity check failed: {result.message}")
        return EXIT_FAILED

    async def run_probe(self, args):
        """Check that the configured bucket exists."""
        bucket_name = resolve_bucket_name(args.bucket)
        if not bucket_name:
            logger.error("No bucket configured (use --bucket, S3_BUCKET or BUCKET_NAME)")
            return EXIT_SKIPPED

        storage = self._storage_factory(args)(
            bucket_name, resolve_region(args.region), UPLOAD_READ_TIMEOUT_SECONDS
        )
        async with storage:
            if await storage.bucket_exists():
                logger.info(f"✓ Bucket {bucket_name} exists")
                return EXIT_PASSED
        logger.warning(f"✗ Bucket {bucket_name} does not exist or is not reachable")
        return EXIT_SKIPPED

    async def run_cleanup(self, args):
        """Delete one object from the configured bucket."""
        bucket_name = resolve_bucket_name(args.bucket)
        if not bucket_name:
            logger.error("No bucket configured (use --bucket, S3_BUCKET or BUCKET_NAME)")
            return EXIT_FAILED

        storage = self._storage_factory(args)(
            bucket_name, resolve_region(args.region), UPLOAD_READ_TIMEOUT_SECONDS
        )
        async with storage:
            logger.info(f"Deleting file {args.object_key} from {bucket_name}")
            await storage.delete_object(args.object_key)
            logger.info(f"File {args.object_key} deleted from {bucket_name}")
        return EXIT_PASSED

    def run(self, args=None):
        """Run the CLI with the given arguments."""
        if args is None:
            args = sys.argv[1:]

        parsed_args = self.parser.parse_args(args)

        if not parsed_args.command:
            self.parser.print_help()
            return EXIT_FAILED

        try:
            if parsed_args.command == 'verify':
                return asyncio.run(self.run_verify(parsed_args))
            elif parsed_args.command == 'probe':
                return asyncio.run(self.run_probe(parsed_args))
            elif parsed_args.command == 'cleanup':
                return asyncio.run(self.run_cleanup(parsed_args))
            else:
                logger.error(f"Unknown command: {parsed_args.command}")
                return EXIT_FAILED

        except KeyboardInterrupt:
            logger.info("Operation interrupted by user")
            return EXIT_FAILED
        except Exception as e:
            logger.error(f"Unexpected error: {e}")
            return EXIT_FAILED


def main():
    """Main entry point."""
    cli = StreamVerifyCLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()

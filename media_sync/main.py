"""
Main entry point for the media sync sidecar.
"""
import os
import sys
import json
import signal
from loguru import logger

from .errors import BootstrapError, ConfigError
from .models.config import SyncConfig
from .services.sync_service import SyncService

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_BOOTSTRAP_ERROR = 3


def setup_logging():
    """Configure logging for the sidecar."""
    # Remove default logger
    logger.remove()

    level = os.getenv('LOG_LEVEL', 'INFO').upper()

    if os.getenv('LOG_FORMAT', 'text').lower() == 'json':
        # One JSON object per line, extras (cycle reports) included
        logger.add(sys.stderr, serialize=True, level=level)
    else:
        logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            level=level
        )

    log_file = os.getenv('LOG_FILE')
    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG"
        )


def install_signal_handlers(sync_service: SyncService):
    """Turn SIGTERM/SIGINT into a graceful shutdown request."""
    def _handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully")
        sync_service.request_shutdown()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def run_sidecar():
    """Run bootstrap, signal readiness, then sync until shutdown."""
    logger.info("Starting Media Sync - Sidecar Mode")

    config = SyncConfig.from_env()
    logger.info(f"Loaded configuration - Bucket: {config.media_s3.bucket}, Local root: {config.local_root}")
    logger.info(f"Sync interval: {config.sync_interval} seconds, "
                f"propagate deletes: {config.propagate_deletes}")

    sync_service = SyncService(config)
    install_signal_handlers(sync_service)
    return sync_service.run_forever()


def run_bootstrap_only():
    """Run the bootstrap download once and exit."""
    logger.info("Starting Media Sync - Bootstrap Mode")

    config = SyncConfig.from_env()
    sync_service = SyncService(config)
    report = sync_service.run_bootstrap()
    logger.info(f"Bootstrap Results: {json.dumps(report.to_dict(), indent=2)}")
    return report


def run_sync_once():
    """Bootstrap, then run exactly one sync cycle."""
    logger.info("Starting Media Sync - Single Cycle Mode")

    config = SyncConfig.from_env()
    sync_service = SyncService(config)
    sync_service.run_bootstrap()
    report = sync_service.run_sync_cycle()
    logger.info(f"Sync Results: {json.dumps(report.to_dict(), indent=2)}")
    return report


def show_status():
    """Show configuration summary and test bucket connectivity."""
    config = SyncConfig.from_env()
    sync_service = SyncService(config)
    status = sync_service.get_sync_status()
    status['bucket_reachable'] = sync_service.s3_manager.test_connection()
    logger.info(f"Service Status: {json.dumps(status, indent=2)}")
    return status


def print_help():
    """Print help information for the CLI."""
    help_text = """
Media Sync - Command Line Interface

USAGE:
    python -m media_sync.main [COMMAND]

COMMANDS:
    run          Bootstrap, signal readiness, then sync periodically (default)
    bootstrap    Download missing objects into the local root and exit
    sync-once    Bootstrap, run a single sync cycle and exit
    status       Show configuration and test bucket connectivity
    help         Show this help message

ENVIRONMENT VARIABLES:
    MEDIA_S3_BUCKET          Bucket name (required)
    MEDIA_S3_REGION          Bucket region (required)
    MEDIA_S3_PREFIX          Key prefix (default: bucket root)
    MEDIA_S3_ENDPOINT        Custom S3 endpoint, e.g. MinIO
    MEDIA_S3_ACCESS_KEY      Static access key (omit to use the ambient role)
    MEDIA_S3_SECRET_KEY      Static secret key
    LOCAL_ROOT               Directory to synchronize (required)
    SYNC_INTERVAL            Seconds between cycle starts (default: 30)
    PROPAGATE_DELETES        Delete remote objects for removed files (default: false)
    SETTLE_WINDOW            Seconds a file must be quiet before upload (default: 5)
    UPLOAD_CONCURRENCY       Parallel uploads per cycle (default: 4)
    RETRY_MAX_ATTEMPTS       Attempts per remote call (default: 5)
    RETRY_BACKOFF_BASE       First backoff delay in seconds (default: 0.5)
    RETRY_BACKOFF_CAP        Maximum backoff delay in seconds (default: 30)
    REMOTE_CALL_TIMEOUT      Per-call timeout in seconds (default: 60)
    SHUTDOWN_GRACE_PERIOD    Seconds for in-flight uploads at shutdown (default: 20)
    BOOTSTRAP_TIMEOUT        Seconds allowed for bootstrap (default: 600)
    READINESS_FILE           File written once bootstrap succeeds
    EXCLUDE_PATTERNS         Comma-separated glob patterns to ignore
    LOG_LEVEL                Log level (default: INFO)
    LOG_FORMAT               text or json (default: text)
    LOG_FILE                 Optional rotating log file
"""
    print(help_text)


def main(argv=None):
    """Main entry point with command line argument handling."""
    setup_logging()
    argv = sys.argv[1:] if argv is None else argv

    # If no arguments provided, run as a sidecar (for the pod)
    command = argv[0].lower() if argv else 'run'

    try:
        if command in ["help", "--help", "-h"]:
            print_help()
        elif command == "run":
            run_sidecar()
        elif command == "bootstrap":
            run_bootstrap_only()
        elif command == "sync-once":
            run_sync_once()
        elif command == "status":
            show_status()
        else:
            logger.error(f"Unknown command: {command}")
            logger.error("Use 'help' to see available commands")
            print_help()
            return EXIT_FAILURE

    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR
    except BootstrapError as e:
        logger.error(f"Bootstrap failed, refusing to start with an incomplete media set: {e}")
        return EXIT_BOOTSTRAP_ERROR
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully")
        return EXIT_OK
    except Exception as e:
        logger.exception(f"Command failed: {e}")
        return EXIT_FAILURE

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

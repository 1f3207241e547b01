"""Composition root for the Roundtrip test harness.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Command line parsing (credentials and target room)
- Configuration loading via config module
- Adapter instantiation
- Session construction and run
- Exception to exit code mapping
"""

import asyncio
import logging
import sys
from collections.abc import Sequence

from roundtrip.adapters.client.loopback import LoopbackClient
from roundtrip.adapters.notification.stdout import StdoutNotificationAdapter
from roundtrip.adapters.notification.webhook import WebhookNotificationAdapter
from roundtrip.config import Settings, load_settings
from roundtrip.core.errors import InvariantViolation, SetupFailure
from roundtrip.core.models import Credentials
from roundtrip.core.ports import NotificationPort, ProtocolClientPort
from roundtrip.core.session import TestSession

USAGE = "Usage: roundtrip <user> <passwd> <device_name> <room_alias> [origin]"

EXIT_USAGE = -1
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Sequence[str]) -> Credentials | None:
    """Build credentials from positional arguments.

    Args:
        argv: Arguments without the program name.

    Returns:
        Credentials, or None if fewer than four arguments were given.
    """
    if len(argv) < 4:
        return None
    user_id, password, device_name, room_ref = argv[:4]
    origin = argv[4] if len(argv) > 4 else ""
    return Credentials(
        user_id=user_id,
        password=password,
        device_name=device_name,
        room_ref=room_ref,
        origin=origin,
    )


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def build_client(settings: Settings) -> ProtocolClientPort:
    """Instantiate the protocol client selected in settings."""
    logger = logging.getLogger(__name__)
    if settings.client_backend == "loopback":
        logger.info("Protocol client: loopback")
        return LoopbackClient(
            latency_seconds=settings.loopback_latency_ms / 1000,
            sync_interval_seconds=settings.loopback_sync_interval_ms / 1000,
            fail_uploads=settings.loopback_fail_uploads,
            members_room_alias=settings.members_room_alias,
        )
    raise ValueError(f"Unknown client backend: {settings.client_backend}")


def build_notifications(settings: Settings) -> list[NotificationPort]:
    """Instantiate the notification adapters selected in settings."""
    logger = logging.getLogger(__name__)
    if settings.notification_backend == "none":
        return []
    if settings.notification_backend == "stdout":
        logger.info("Notification adapter: Stdout")
        return [StdoutNotificationAdapter(verbose=settings.debug)]
    if settings.notification_backend == "webhook":
        if not settings.notification_webhook_url:
            raise ValueError(
                "Webhook notification selected but NOTIFICATION_WEBHOOK_URL not set"
            )
        logger.info("Notification adapter: Webhook")
        return [
            WebhookNotificationAdapter(
                url=settings.notification_webhook_url,
                token=settings.notification_webhook_token or None,
            )
        ]
    raise ValueError(f"Unknown notification backend: {settings.notification_backend}")


async def bootstrap(credentials: Credentials, settings: Settings) -> int:
    """Wire adapters into a session and run the suite.

    Returns:
        Exit status of the run (failed + unfinished).

    Raises:
        SetupFailure: If the session could not reach the test room.
        InvariantViolation: On a broken harness invariant.
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Starting roundtrip as {credentials.user_id}")

    client = build_client(settings)
    notifications = build_notifications(settings)
    session = TestSession(
        client,
        credentials,
        watchdog_timeout_seconds=settings.watchdog_timeout_seconds,
        teardown_timeout_seconds=settings.teardown_timeout_seconds,
        notifications=notifications,
        lazy_loading=settings.lazy_loading,
        members_room_alias=settings.members_room_alias,
        test_tag=settings.test_tag,
    )
    return await session.run()


def main(argv: Sequence[str] | None = None) -> None:
    """Application entry point.

    Exit codes:
        failed + unfinished: Normal run (0 on full success)
        -1: Usage error
        -2: Setup failure (resolve, login, join, initial sync)
        -3: Harness invariant violation
        1: Fatal configuration or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    args = list(sys.argv[1:] if argv is None else argv)
    credentials = parse_arguments(args)
    if credentials is None:
        print(USAGE, file=sys.stderr)
        sys.exit(EXIT_USAGE)

    logger = logging.getLogger(__name__)
    try:
        settings = load_settings()
    except Exception as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_FATAL)
    configure_logging(
        "DEBUG" if settings.debug else settings.log_level, settings.log_format
    )

    try:
        code = asyncio.run(bootstrap(credentials, settings))
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(EXIT_INTERRUPTED)
    except (SetupFailure, InvariantViolation) as e:
        logger.error(f"Run aborted: {e}")
        sys.exit(e.exit_code)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(EXIT_FATAL)
    sys.exit(code)


if __name__ == "__main__":
    main()

"""M90 server entry point — ``python -m m90.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from m90.core.config.settings import Settings, get_settings
from m90.core.server.app import create_app

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def configure_logging(level_name: str) -> int:
    """Configure root logging from a level name; unknown names fall back to INFO."""
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return level


def check_startup(settings: Settings) -> None:
    """Refuse unsafe binds and report what the server will run with.

    Raises:
        RuntimeError: if the host is not loopback and insecure binds are not allowed.
    """
    if not settings.m90_allow_insecure_bind and not _is_loopback_host(settings.m90_host):
        raise RuntimeError(
            f"Refusing to bind the M90 server to non-loopback host {settings.m90_host!r}: "
            "there is no login or role layer in front of patient data. "
            "Set M90_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    if settings.m90_allow_insecure_bind and not _is_loopback_host(settings.m90_host):
        logger.warning("Serving patient data on non-loopback host %s", settings.m90_host)
    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY is not set: patient records are disabled, "
            "only health_check and preview_patient_metrics are available"
        )
    else:
        logger.info("Patient records stored at %s", settings.db_path)


def run() -> None:
    """Start the M90 MCP server with Streamable HTTP transport."""
    settings = get_settings()
    configure_logging(settings.m90_log_level)
    check_startup(settings)

    logger.info(
        "Starting M90 Treatment Tracker on %s:%d",
        settings.m90_host,
        settings.m90_port,
    )
    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.m90_host,
        port=settings.m90_port,
    )


if __name__ == "__main__":
    run()

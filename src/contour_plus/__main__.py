"""Entry point for ``python -m contour_plus``.

Configures structured logging, loads settings from the environment, and
runs the controller manager with graceful shutdown on SIGINT / SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import sys

import structlog

from contour_plus import __version__
from contour_plus.config import ControllerSettings, load_settings

_CLIENT_LOGGERS = ("kubernetes.client.rest", "urllib3")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(settings: ControllerSettings) -> None:
    """Route structlog through the stdlib root logger at ``settings.log_level``.

    The kubernetes client logs every request body at DEBUG, so its loggers
    stay at WARNING unless the controller itself runs at DEBUG.
    """
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
    root.setLevel(level)

    client_level = level if level <= logging.DEBUG else logging.WARNING
    for name in _CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            _renderer(settings.log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Load config, wire up reconcilers and signals, and start the manager."""
    from pydantic import ValidationError

    from contour_plus.factory import setup_reconcilers
    from contour_plus.manager import ControllerManager
    from contour_plus.store import KubernetesStore, load_k8s_config

    try:
        settings = load_settings()
    except ValidationError as exc:
        # structlog is not configured yet
        print(f"ERROR: Invalid settings: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings)
    logger = structlog.get_logger("main")
    logger.info(
        "contour_plus_starting",
        version=__version__,
        service=settings.service_name,
        crds=settings.crds,
        name_prefix=settings.name_prefix,
        default_issuer_name=settings.default_issuer_name,
        default_issuer_kind=settings.default_issuer_kind.value,
        ingress_class_name=settings.ingress_class_name or None,
    )

    load_k8s_config()
    store = KubernetesStore()
    manager = ControllerManager(
        store,
        watch_timeout=settings.watch_timeout,
        retry_base_delay=settings.retry_base_delay,
        retry_max_delay=settings.retry_max_delay,
    )
    setup_reconcilers(manager, store, settings.reconciler_options())

    def _shutdown(signum: int, _frame: object) -> None:
        try:
            sig_name = signal.Signals(signum).name
        except ValueError:
            sig_name = str(signum)
        logger.info("signal_received", signal=sig_name)
        manager.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        manager.start()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
    finally:
        manager.stop()
        logger.info("contour_plus_exited")


if __name__ == "__main__":
    main()

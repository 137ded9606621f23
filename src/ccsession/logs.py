"""structlog setup for applications embedding ccsession.

Library modules only call ``structlog.get_logger()``; ``setup_logging()`` is
for the embedding process (or a test harness) to call once at startup.
"""

import logging

import structlog

_PACKAGE_PREFIX = "ccsession."


def _short_name_processor(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Strip the 'ccsession.' prefix, cap at 20 chars."""
    record = event_dict.get("_record")
    name = record.name if record is not None else event_dict.get("logger", "")
    if not name:
        name = event_dict.get("logger", "")
    if name.startswith(_PACKAGE_PREFIX):
        name = name[len(_PACKAGE_PREFIX) :]
    event_dict["short_name"] = name[:20]
    return event_dict


def setup_logging(log_level: str = "INFO", colors: bool = True) -> None:
    """Configure structured, colored logging for interactive use."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _short_name_processor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib records (ours and third-party) share one handler
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=colors, pad_event=40),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            ],
        )
    )
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("ccsession").setLevel(numeric_level)
    for name in ("asyncio", "claude_agent_sdk"):
        logging.getLogger(name).setLevel(logging.WARNING)

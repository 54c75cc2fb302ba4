import logging.config
from typing import Any, Generic, TypeVar

import structlog

from tokenmarket.core.config import settings

RendererType = TypeVar("RendererType")

Logger = structlog.stdlib.BoundLogger

# Third party loggers that are too chatty at INFO
QUIET_LOGGERS = ("websockets.client", "aiohttp.access")


class Logging(Generic[RendererType]):
    timestamper = structlog.processors.TimeStamper(fmt="iso")
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        timestamper,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.StackInfoRenderer(),
    ]

    @classmethod
    def get_shared_processors(cls) -> list[Any]:
        if settings.is_production:
            return cls.shared_processors + [structlog.processors.format_exc_info]

        return list(cls.shared_processors)

    @classmethod
    def get_processors(cls) -> list[Any]:
        return cls.get_shared_processors() + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter
        ]

    @classmethod
    def get_renderer(cls) -> RendererType:
        raise NotImplementedError()

    @classmethod
    def configure_stdlib(cls, level: str | None = None) -> None:
        level = level or settings.LOG_LEVEL

        quiet = {
            name: {"handlers": ["default"], "level": "WARNING", "propagate": False}
            for name in QUIET_LOGGERS
        }

        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": True,
                "formatters": {
                    "tokenmarket": {
                        "()": structlog.stdlib.ProcessorFormatter,
                        "processors": [
                            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                            cls.get_renderer(),
                        ],
                        "foreign_pre_chain": cls.get_shared_processors(),
                    },
                },
                "handlers": {
                    "default": {
                        "level": level,
                        "class": "logging.StreamHandler",
                        "formatter": "tokenmarket",
                    },
                },
                "loggers": {
                    "": {
                        "handlers": ["default"],
                        "level": level,
                        "propagate": False,
                    },
                    **quiet,
                },
            }
        )

    @classmethod
    def configure_structlog(cls) -> None:
        structlog.configure_once(
            processors=cls.get_processors(),
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    @classmethod
    def configure(cls, level: str | None = None) -> None:
        cls.configure_stdlib(level)
        cls.configure_structlog()


class Development(Logging[structlog.dev.ConsoleRenderer]):
    @classmethod
    def get_renderer(cls) -> structlog.dev.ConsoleRenderer:
        return structlog.dev.ConsoleRenderer(colors=True)


class Production(Logging[structlog.processors.JSONRenderer]):
    @classmethod
    def get_renderer(cls) -> structlog.processors.JSONRenderer:
        return structlog.processors.JSONRenderer()


def configure(level: str | None = None) -> None:
    if settings.is_production:
        Production.configure(level)
    else:
        Development.configure(level)

import inspect
import logging
import os

from pythonjsonlogger import jsonlogger


def _caller_location() -> str:
    """Return file:line of the code that called the logging method."""
    frame = inspect.currentframe()
    # Skip this helper and the Logger method that invoked it
    caller = frame.f_back.f_back if frame and frame.f_back else None
    if caller is None:
        return "unknown:0"
    return f"{caller.f_code.co_filename}:{caller.f_lineno}"


class Logger(logging.LoggerAdapter):
    """Process-wide JSON logger that accepts structured context as kwargs.

    Example:
        logger.info("Entity created", entity_kind="deal", entity_id=deal.id)
    """

    _instance = None
    _initialized = False

    def __new__(cls) -> "Logger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not Logger._initialized:
            log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
            log_level = logging.getLevelName(log_level_str)
            if not isinstance(log_level, int):
                log_level = logging.INFO

            formatter = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"asctime": "@timestamp", "levelname": "log_level"},
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)

            logger = logging.getLogger("crmcore")
            logger.setLevel(log_level)
            logger.addHandler(handler)

            super().__init__(logger)
            Logger._initialized = True

    def error(self, msg: str, *args: tuple, **kwargs: dict) -> None:
        """Log at ERROR level, tagging the record with the caller's location."""
        kwargs["file"] = _caller_location()
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(
        self, msg: str, *args: tuple, exc_info: bool = True, **kwargs: dict
    ) -> None:
        """Log at ERROR level with traceback, tagging the caller's location."""
        kwargs["file"] = _caller_location()
        self.log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        # Everything that is not a logging keyword becomes a JSON field
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", None)
        stacklevel = kwargs.pop("stacklevel", None)

        result_kwargs = {}
        if kwargs:
            result_kwargs["extra"] = kwargs
        if exc_info is not None:
            result_kwargs["exc_info"] = exc_info
        if stack_info is not None:
            result_kwargs["stack_info"] = stack_info
        if stacklevel is not None:
            result_kwargs["stacklevel"] = stacklevel

        return msg, result_kwargs


logger = Logger()

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = "<level>{level: <7}</level> <cyan>{name}</cyan> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{line} {message}"


def setup_logger(level: str = "INFO", log_file: str | None = None, json_logs: bool = False) -> int | None:
    """Route loguru output to stderr and, when ``log_file`` is set, to a daily file.

    The file keeps two weeks of history. With ``json_logs`` each record is
    written as one JSON object per line. Returns the file sink id.
    """
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper())
    if not log_file:
        return None
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    sink_id = logger.add(
        path,
        format=FILE_FORMAT,
        level=level.upper(),
        rotation="00:00",
        retention="14 days",
        serialize=json_logs,
        encoding="utf-8",
    )
    logger.debug(f"Writing logs to {path}")
    return sink_id

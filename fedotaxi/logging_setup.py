import logging
from pathlib import Path
from typing import Optional, Union


def configure_logging(log_file: Optional[str] = None, level: Union[int, str] = logging.INFO):
    """Configure simple file logging for the application.

    Writes logs to `fedotaxi/logs/fedotaxi.log` by default; a relative
    `log_file` is placed in that same directory.
    """
    base = Path(__file__).resolve().parent
    logs_dir = base / "logs"
    if log_file is None:
        log_file = logs_dir / "fedotaxi.log"
    else:
        log_file = Path(log_file)
        if not log_file.is_absolute():
            log_file = logs_dir / log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    # Basic file configuration
    logging.basicConfig(
        filename=str(log_file),
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

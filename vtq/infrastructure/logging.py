import logging
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

def setup_logging(log_dir: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """Configures root logging: rich console output, plus vtq.log when log_dir is set."""
    level = logging.DEBUG if debug else logging.INFO
    handlers = [RichHandler(show_path=debug, rich_tracebacks=True)]

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "vtq.log")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("vtq")

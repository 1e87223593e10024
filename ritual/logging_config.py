import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route log records through Rich for CLI output"""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )

# authwatch/log_ingestor.py
from pathlib import Path
from typing import Dict, List, Tuple

from .errors import InputDirectoryError
from .parsers import CLOUD_AUDIT, SSH_DAEMON

# Map file suffixes to a logical source key
SUPPORTED_SUFFIXES: Dict[str, str] = {
    ".json": CLOUD_AUDIT,
    ".log": SSH_DAEMON,
}


def discover_sources(log_dir) -> List[Tuple[Path, str]]:
    """
    Return (path, source) pairs for every supported file in log_dir,
    sorted by file name so runs always walk inputs in the same order.
    """
    log_dir = Path(log_dir)
    try:
        entries = sorted(log_dir.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise InputDirectoryError(f"cannot list input directory {log_dir}: {e}") from e

    sources: List[Tuple[Path, str]] = []
    for path in entries:
        source = SUPPORTED_SUFFIXES.get(path.suffix.lower())
        if source is None or not path.is_file():
            continue
        sources.append((path, source))
    return sources

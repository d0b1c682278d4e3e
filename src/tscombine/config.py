"""Configuration for the time-series combiner.

This module centralises access to environment variables and default
filesystem paths.  Loading environment variables from a `.env` file
eliminates the need to hardcode machine-specific paths in job files.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load variables from a `.env` file if present.  Loading is idempotent, so
# calling this multiple times is safe.
load_dotenv()


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable with an optional default.

    Parameters
    ----------
    name : str
        The name of the environment variable to retrieve.
    default : str | None
        A default value to return if the variable is not set.

    Returns
    -------
    str | None
        The value of the environment variable or the default.
    """
    return os.environ.get(name, default)


# Base directory for input data.  Defaults to `./data`.  Relative source paths
# in job files are resolved against this directory when they do not exist as
# given.
DATA_ROOT = Path(get_env("TSCOMBINE_DATA_ROOT", "./data")).resolve()

# Where combined tables are written when a job does not name an output path.
OUTPUT_DIR = Path(get_env("TSCOMBINE_OUTPUT_DIR", str(DATA_ROOT / "output"))).resolve()

# Grid spacing used when a job omits one; unparsable values fall back to 1min.
DEFAULT_INTERVAL = get_env("TSCOMBINE_DEFAULT_INTERVAL", "1min")

LOG_LEVEL = get_env("TSCOMBINE_LOG_LEVEL", "INFO")


def resolve_data_path(path: str | Path) -> Path:
    """Return ``path`` as given if it exists, otherwise relative to DATA_ROOT."""
    path = Path(os.path.expanduser(str(path)))
    if path.is_absolute() or path.exists():
        return path
    return DATA_ROOT / path

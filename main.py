"""Compatibility entrypoint for running shimloader via `python main.py`."""

import sys
from pathlib import Path

# Add src to path for development mode
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from shimloader.cli import main  # noqa: E402


if __name__ == "__main__":
    main()

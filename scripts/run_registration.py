"""
Example script for a complete PSO registration run

Equivalent to the `pso-register` entry point, usable from a source checkout
without installing the package.

Usage:
    uv run scripts/run_registration.py data/synthetic/source.pcd data/synthetic/target.pcd \
        -g data/synthetic/ground_truth.pcd -p 50 -e 1000
"""

import sys
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.cli import main


if __name__ == "__main__":
    sys.exit(main())

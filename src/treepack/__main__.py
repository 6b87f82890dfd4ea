"""Entry point for `python -m treepack`."""

import sys

from treepack.cli import main

sys.exit(main())

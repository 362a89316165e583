"""Allow running the router as a module: python -m fanout."""

import sys

from fanout.runner import main

if __name__ == "__main__":
    sys.exit(main())

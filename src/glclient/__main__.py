"""Entry point for running as module: python -m glclient"""

import sys

from glclient.cli import main

if __name__ == "__main__":
    sys.exit(main())

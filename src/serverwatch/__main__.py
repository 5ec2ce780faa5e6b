"""Allow running as ``python -m serverwatch``."""

import sys

from serverwatch.app import main

sys.exit(main())

"""Allow running the collector with ``python -m smartcollector``."""

import sys

from smartcollector.main import main

sys.exit(main())

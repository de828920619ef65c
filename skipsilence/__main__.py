"""Allow ``python -m skipsilence``."""

import sys

from skipsilence.cli import main

sys.exit(main())

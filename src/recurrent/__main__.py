"""Allow `python -m recurrent` to launch the scheduler."""

import sys

from recurrent.main import main

sys.exit(main())

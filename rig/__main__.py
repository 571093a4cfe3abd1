"""Run the rig command line: ``python -m rig demo``."""

import sys

from rig.main import main

sys.exit(main())

"""python -m causal_tutorials"""

import sys

from .cli import main

sys.exit(main())

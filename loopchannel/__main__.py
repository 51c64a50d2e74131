"""Allow ``python -m loopchannel``."""

import sys

from loopchannel.main import main

sys.exit(main())

import sys

from tradedoc.cli import main

sys.exit(main())

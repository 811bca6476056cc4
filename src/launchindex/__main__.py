import sys

from launchindex.cli import main

sys.exit(main())

import sys

from sikg.cli import main

sys.exit(main())

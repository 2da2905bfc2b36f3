import sys

from motwatch.cli import main

sys.exit(main())

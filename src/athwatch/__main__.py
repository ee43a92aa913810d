import sys

from athwatch.cli import main

sys.exit(main())

import sys

from tracespammer._cli import main

sys.exit(main())

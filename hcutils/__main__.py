import sys

from hcutils.cli import main

sys.exit(main())

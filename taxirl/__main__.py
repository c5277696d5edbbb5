import sys

from taxirl.cli import main

sys.exit(main())

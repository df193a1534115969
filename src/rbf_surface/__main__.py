import sys

from .reconstruct import main

sys.exit(main())

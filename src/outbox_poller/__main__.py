import sys

from .core.outbox.runner import main

sys.exit(main())

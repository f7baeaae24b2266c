import sys

from vertiscale.app import main

sys.exit(main())

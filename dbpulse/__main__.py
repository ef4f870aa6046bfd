import sys

from dbpulse.main import main

sys.exit(main())

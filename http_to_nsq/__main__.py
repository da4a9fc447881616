import sys

from http_to_nsq.main import main

sys.exit(main())

import sys

from tropes_crawler.cli import main


sys.exit(main())

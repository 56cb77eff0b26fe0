import sys

from pagerank_engine.cli import main

sys.exit(main())

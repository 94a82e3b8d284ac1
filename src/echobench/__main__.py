"""
Run the tools as a module:

    python -m echobench server -p 7000 -n 4
    python -m echobench client -h localhost -p 7000 -n 4 -c 100 -d PING -r 2 -t 5000
"""

import sys

from .cli import main


if __name__ == "__main__":
    sys.exit(main())

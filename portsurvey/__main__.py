"""
Port Survey - Module entry point.

    python -m portsurvey --targets 10.0.0.1 --username admin
"""

import sys

from portsurvey.cli import main

if __name__ == '__main__':
    sys.exit(main())

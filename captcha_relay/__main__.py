"""Run the captcha-relay command line.

Usage:
    python -m captcha_relay <command> [options]
"""

import sys

from captcha_relay._cli import main

sys.exit(main())

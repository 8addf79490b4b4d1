"""
Allow running the package as a module:
    python -m oracle_gate calibrate --demo
    python -m oracle_gate check "What time is it?" --tau 0.7
"""

import sys

from oracle_gate.cli import main

if __name__ == '__main__':
    sys.exit(main())

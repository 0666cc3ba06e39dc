"""
ScanRNN CLI

Usage:
    python -m scan_rnn --help
    python -m scan_rnn check lstm gru
    python -m scan_rnn benchmark lstm --hidden 256
    python -m scan_rnn info

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

import sys

from scan_rnn.cli import main


if __name__ == '__main__':
    sys.exit(main())

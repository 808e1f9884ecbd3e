#!/usr/bin/env python3
"""
Main entry point for the editor-pulse module.
This allows running the module with: python -m editor_pulse
"""

import sys

from editor_pulse.cli import main

if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Hark assistant: one-shot questions, image questions, text chat or the voice loop."""

from __future__ import annotations

import sys

from hark.assistant.cli import main

if __name__ == "__main__":
    sys.exit(main())

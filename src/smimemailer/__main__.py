#!/usr/bin/env python3
"""
Allow running smimemailer as a module: python -m smimemailer

Which is equivalent to:
    smimemailer [OPTIONS] COMMAND
"""

from smimemailer.cli import main

if __name__ == "__main__":
    raise SystemExit(main())

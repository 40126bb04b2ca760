#!/usr/bin/env python3
"""Somnus alarm daemon."""

from somnus.daemon import run

if __name__ == "__main__":
    run()

#!/bin/python
"""
Unified entry point for the churn model comparison plan.

Builds only what changed since the last run: edit a hyperparameter or the
input CSV and `make` re-executes the affected targets and nothing else.
See `python main.py --help` for the subcommands.
"""
import sys

from ChurnPlan.cli import main

if __name__ == "__main__":
    sys.exit(main())

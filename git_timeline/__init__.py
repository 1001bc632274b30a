"""
Git Timeline - Mirror commit activity into a public timeline repository.

This package harvests the timestamps and subjects of your own commits from
any number of local repositories and replays them as empty commits into a
single destination repository, so the activity is visible without exposing
any source code.
"""

__version__ = "1.0.0"

"""Main entry point when executing topicfilter as a package.

This allows running the package using python -m topicfilter.
"""

from topicfilter.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

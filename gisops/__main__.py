"""Main entry point when executing gisops as a package.

This allows running the package using python -m gisops.
"""

from gisops.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

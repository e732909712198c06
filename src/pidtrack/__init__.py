"""pidtrack: work assignment and progress tracking for P&ID review.

Team leads hand P&IDs, lines and equipment to team members as Redline, UPV
or QC tasks; members mark items complete and the service rolls completions
into task progress and a daily metrics ledger.

Usage:
    # Run the API
    $ pidtrack serve

    # Create and seed the database
    $ pidtrack init-db --seed

    # Print the metrics ledger for a day
    $ pidtrack metrics --date 2025-03-14

    # Python API
    from pidtrack.web.app import create_app

    app = create_app()
"""

try:
    from importlib.metadata import version as _get_version

    __version__ = _get_version("pidtrack")
except Exception:
    __version__ = "0.0.0-dev"


__all__ = ["__version__"]

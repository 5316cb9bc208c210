"""
Summar output panel.

Streams task output and follow-up conversations into keyed records, keeps
the on-screen list in sync with them, and snapshots them to disk.
"""


def main():
    """Convenience entry point; delegates to summar_app.main()."""
    from summar_app import main as _main
    _main()


__all__ = ["main"]

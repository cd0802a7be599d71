"""
Steward entry point — ``python -m steward <command>``.

    python -m steward shutdown --node worker-2 --dry-run
    python -m steward status

Run ``python -m steward --help`` for the full command list.
"""

from steward.cli import cli

if __name__ == "__main__":
    cli()

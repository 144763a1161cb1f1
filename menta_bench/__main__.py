"""Allow running as `python -m menta_bench`."""

from .cli import cli

if __name__ == "__main__":
    cli()

"""Allow ``python -m cqlrepro``."""

from cqlrepro.cli.app import app

if __name__ == "__main__":
    app()

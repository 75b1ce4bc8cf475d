"""Allow ``python -m getcerts``."""

from getcerts.cli.main import main

main()

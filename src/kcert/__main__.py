"""Allow ``python -m kcert``."""

from kcert.cli.main import main

main()

"""kcert command-line interface."""

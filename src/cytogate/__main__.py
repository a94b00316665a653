"""Entry point for ``python -m cytogate``."""

from cytogate.cli import main

if __name__ == "__main__":
    main()

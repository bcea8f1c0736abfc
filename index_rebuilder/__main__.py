"""Allow ``python -m index_rebuilder``."""

from .cli import main

if __name__ == "__main__":
    main()

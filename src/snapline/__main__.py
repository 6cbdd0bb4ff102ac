"""Entry point for running snapline via python -m snapline"""

from .cli import main

if __name__ == "__main__":
    main()

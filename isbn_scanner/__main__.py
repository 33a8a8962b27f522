import sys

from isbn_scanner.cli import main

if __name__ == "__main__":
    sys.exit(main())

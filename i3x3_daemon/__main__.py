"""Allow running as python -m i3x3_daemon."""

from .cli import main

if __name__ == "__main__":
    main()

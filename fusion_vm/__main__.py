"""Entry point for Fusion VM."""

import sys

from fusion_vm.cli import main

if __name__ == "__main__":
    sys.exit(main())

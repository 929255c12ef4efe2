"""CLI entrypoint for the scene render pipeline."""

import sys

from scene_render.cli import main

if __name__ == "__main__":
    sys.exit(main())

"""Entry point for the zonn-bridge executable."""

import sys
from pathlib import Path

# Add the project directory to path for imports
project_dir = Path(__file__).parent
if str(project_dir) not in sys.path:
    sys.path.insert(0, str(project_dir))

from zonn_bridge.service import main

if __name__ == "__main__":
    main()

"""
Test suite for the episode stamper.

Unit tests per component plus end-to-end runs through the session
and command line entry point.
"""

import sys
from pathlib import Path

# Add the project root to the Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

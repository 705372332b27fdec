"""
Pytest configuration file.

Adds the project root to the Python path so `title_finder` imports without install.
"""

import os
import sys

_project_root = os.path.dirname(os.path.abspath(__file__))

if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

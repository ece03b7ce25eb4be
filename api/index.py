"""
Vercel serverless entry point for the MediGuard API.
Vercel runs this file directly, so the project root has to be importable first.
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediguard.main import app  # noqa: E402,F401

"""
Spacerec - Live Audio Broadcast Recorder

Captures live audio broadcasts distributed over HLS: resolves the broadcast
through the platform's private GraphQL API, then polls the live playlist and
downloads every new segment until the broadcast ends.
"""

# Load .env from the repo root so all submodules pick up environment variables
from pathlib import Path

from dotenv import load_dotenv

_repo_root = Path(__file__).resolve().parents[1]
_env_path = _repo_root / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=str(_env_path), override=False)

__version__ = "0.1.0"
__author__ = "Spacerec Team"
__description__ = "Live Audio Broadcast Recorder"

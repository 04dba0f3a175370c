# path: asbuilt-gps/asbuilt/config.py

import os
from pathlib import Path
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

# Storage (server side assignments, client side drafts)
PROJECTS_ROOT = os.getenv("PROJECTS_ROOT", str(Path.cwd() / "data" / "projects"))
DRAFTS_DIR = os.getenv("DRAFTS_DIR", str(Path.cwd() / "data" / "drafts"))

# Persistence transport
ASBUILT_API_URL = os.getenv("ASBUILT_API_URL", "http://localhost:4000")
REQUEST_TIMEOUT_S = float(os.getenv("REQUEST_TIMEOUT_S", 10))

# Bayern GK4
DEFAULT_CRS = os.getenv("DEFAULT_CRS", "EPSG:31468")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

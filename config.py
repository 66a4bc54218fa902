from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/schedule.db")

# GTFS Static (stops, routes, trips, stop_times, fare_*, frequencies)
GTFS_STATIC_URL: str = os.getenv("GTFS_STATIC_URL", "")
GTFS_REFRESH_HOURS: int = int(os.getenv("GTFS_REFRESH_HOURS", "24"))

# API
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
]
INGEST_API_KEY: str = os.getenv("INGEST_API_KEY", "")  # empty → ingest endpoint open

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# Graph construction
WALK_RADIUS_METRES: float = float(os.getenv("WALK_RADIUS_METRES", "250"))
WALK_MAX_NEIGHBOURS: int = int(os.getenv("WALK_MAX_NEIGHBOURS", "3"))
GRID_CELL_DEGREES: float = float(os.getenv("GRID_CELL_DEGREES", "0.004"))  # ~400 m

# Cost model
DEFAULT_MODE: str = os.getenv("DEFAULT_MODE", "balanced")
DEFAULT_HEADWAY_SECONDS: int = int(os.getenv("DEFAULT_HEADWAY_SECONDS", "900"))
WALK_ZIGZAG_CAP_METRES: float = float(os.getenv("WALK_ZIGZAG_CAP_METRES", "500"))
FARE_CURRENCY: str = os.getenv("FARE_CURRENCY", "IDR")

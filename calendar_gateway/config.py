import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./calendar_gateway.db")

# Deployment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# CalDAV tree mount point for the colocated deployment (standalone serves at "/")
CALDAV_BASE_PATH = os.getenv("CALDAV_BASE_PATH", "/caldav").rstrip("/")
CALENDAR_AUTH_REALM = os.getenv("CALENDAR_AUTH_REALM", "Calendar")
CALENDAR_PRODID = os.getenv("CALENDAR_PRODID", "-//CBRC//Calendar//EN")

# Built-in calendar metadata, used whenever the settings table is empty or unreachable
CALENDAR_NAME = os.getenv("CALENDAR_NAME", "CBRC Termine")
CALENDAR_DESCRIPTION = os.getenv(
    "CALENDAR_DESCRIPTION", "Coiffeur by Rabia Cayli - Termine und Zeitblöcke"
)
CALENDAR_TIMEZONE = os.getenv("CALENDAR_TIMEZONE", "Europe/Vienna")
CALENDAR_REFRESH_INTERVAL = int(os.getenv("CALENDAR_REFRESH_INTERVAL", "3600"))
CALENDAR_MAX_EVENTS = int(os.getenv("CALENDAR_MAX_EVENTS", "1000"))

# Admin API (token + settings management). No default: admin endpoints stay closed until set.
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

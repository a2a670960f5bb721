import os
import dotenv
import logging

dotenv.load_dotenv()

GITLAB_URL = os.environ.get("GITLAB_URL", "https://gitlab.com").rstrip("/")
GITLAB_TOKEN = os.environ.get("GITLAB_TOKEN")
GITLAB_WEBHOOK_SECRET = os.environ.get("GITLAB_WEBHOOK_SECRET")

OVERRIDE_LOGGING = logging.getLevelName(os.environ.get("OVERRIDE_LOGGING", "WARNING"))

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID")

DISKCACHE_DIR = os.environ.get("DISKCACHE_DIR", "/tmp/gitlab-mr-coverage")

EVENT_LOG_SIZE = int(os.environ.get("EVENT_LOG_SIZE", 1000))

GITLAB_REQUEST_TIMEOUT = float(os.environ.get("GITLAB_REQUEST_TIMEOUT", 30))

PORT = int(os.environ.get("PORT", 4040))

DRY_RUN = os.environ.get("DRY_RUN", "false") == "true"

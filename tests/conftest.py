import os

# The app module reads settings at import time.
os.environ.setdefault("HELP_CHAT_STORE", "memory")
os.environ.setdefault("DB_SEED_DEFAULTS", "false")
os.environ.setdefault("APP_ENV", "test")

"""
Runtime configuration for Dream Analyzer.
Values come from the environment, with a local .env file loaded first.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Completion provider
GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")
ANALYSIS_WORD_TARGET = int(os.environ.get("ANALYSIS_WORD_TARGET", "150"))

# Hosted store (auth + tables)
SUPABASE_URL = os.environ.get("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", "15"))

# Flask
FLASK_SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "")

# Field encryption; see encryption.py for the development fallback
ENCRYPTION_KEY = os.environ.get("ENCRYPTION_KEY", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

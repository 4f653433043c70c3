"""
Database client configuration.
Uses Supabase (PostgreSQL via PostgREST) as the artifact store.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY")

# Service-level client. Artifacts are written on behalf of email senders, who
# never hold a Supabase session, so there is no user-level client here.
supabase_admin: Optional[Client] = None

if SUPABASE_URL and SUPABASE_SERVICE_KEY:
    try:
        supabase_admin = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    except Exception as e:
        logger.error(f"Could not create Supabase client: {e}")
else:
    logger.warning(
        "SUPABASE_URL / SUPABASE_SERVICE_KEY not set; artifact storage is unavailable"
    )

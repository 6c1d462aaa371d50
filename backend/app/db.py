"""
Supabase clients for the mail center.

Tables: contacts, mail_items, package_fees, action_history.

- supabase: anon-key client, only used to verify bearer tokens
- supabase_admin: service-key client for every table query; it bypasses
  row-level security, so each query filters on user_id (or goes through an
  ownership check in app.auth) itself. None when SUPABASE_SERVICE_KEY is
  missing; /health/db reports that case.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

if not SUPABASE_URL or not SUPABASE_KEY:
    raise ValueError(
        "SUPABASE_URL and SUPABASE_KEY must be set (environment or backend/.env)"
    )

supabase: Client = create_client(SUPABASE_URL, SUPABASE_KEY)

supabase_admin: Optional[Client] = (
    create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY) if SUPABASE_SERVICE_KEY else None
)

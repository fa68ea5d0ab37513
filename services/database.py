"""
Supabase database service - single source of truth for the reference data connection

The engine only reads: hs_codes, customs_regimes, local_transport_rates, exchange_rates.
"""

import os
from functools import lru_cache
from supabase import create_client, Client
from supabase.lib.client_options import ClientOptions
from dotenv import load_dotenv

load_dotenv()

DEFAULT_SCHEMA = "public"


@lru_cache()
def get_supabase() -> Client:
    """Get Supabase client (cached singleton) for reference table reads"""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY) must be set")

    opts = ClientOptions(schema=os.getenv("SUPABASE_SCHEMA", DEFAULT_SCHEMA))
    return create_client(url, key, options=opts)

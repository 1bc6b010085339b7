from supabase import create_client


def init_supabase(app):
    """Supabase client for contract PDF storage, or None when not configured."""
    url = app.config.get('SUPABASE_URL')
    # Storage writes need the service role key; the anon key only works with permissive bucket policies
    key = app.config.get('SUPABASE_SERVICE_ROLE_KEY') or app.config.get('SUPABASE_KEY')

    if not url or not key:
        app.logger.info("Supabase not configured, contract PDFs go to local storage")
        return None

    return create_client(url, key)

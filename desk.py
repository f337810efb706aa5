#!/usr/bin/env python3
"""
datadesk CLI entrypoint (desk.py)

Metadata-driven CRUD for PostgREST/Supabase or local YAML tables.

This file delegates to the datadesk CLI layer.
"""
from datadesk.cli.desk_cli import main

if __name__ == "__main__":
    main()

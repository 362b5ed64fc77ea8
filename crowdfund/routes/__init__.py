"""JSON API blueprints, mounted under /api by create_app()."""

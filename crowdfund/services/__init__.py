"""Payment, donation and notification services used by the route blueprints."""

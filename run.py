"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py seed-data
    flask --app run.py annotate-dprs
    flask --app run.py audit-trail --limit 50
    flask --app run.py site-summary p1

"""

from sitemaster import create_app

# Application object for the Flask CLI. `flask --app run.py ...` looks for this `app` variable.
app = create_app()

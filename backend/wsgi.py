# backend/wsgi.py
from vitrine import create_app

app = create_app()

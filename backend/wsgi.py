# backend/wsgi.py
from efacture import create_app

app = create_app()

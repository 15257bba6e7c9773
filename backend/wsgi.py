# backend/wsgi.py
from dairyflow import create_app

app = create_app()

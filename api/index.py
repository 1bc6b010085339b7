# Vercel entrypoint: exposes the WSGI app built by the despachante factory.
import os
import sys

root_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if root_dir not in sys.path:
    sys.path.append(root_dir)

from despachante.app import create_app

app = create_app()

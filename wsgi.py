import os
import sys

# Add the project directory to the python path
project_home = os.path.dirname(os.path.abspath(__file__))
if project_home not in sys.path:
    sys.path = [project_home] + sys.path

# Default to an absolute SQLite path next to the project unless configured
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(project_home, 'hnv_property.db')}")

from hnvpm.main import app
from a2wsgi import ASGIMiddleware

# WSGI hosts: wrap the ASGI FastAPI app as WSGI
application = ASGIMiddleware(app)

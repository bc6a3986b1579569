# FastAPI application redirect
# The actual app lives in the app package

from app.main import app

# Lets uvicorn find the app when started from the repository root:
#   uvicorn main:app --host 0.0.0.0 --port 8000

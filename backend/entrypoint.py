"""Run the API with uvicorn: ``python entrypoint.py``."""
import uvicorn

from deseo.main import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)

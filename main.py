from __future__ import annotations

import os

from smartcal.app import app

if __name__ == "__main__":
  import uvicorn

  host = os.getenv("HOST", "127.0.0.1")
  port = int(os.getenv("PORT", "8000"))
  uvicorn.run(app, host=host, port=port)

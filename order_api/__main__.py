import os

import uvicorn

from order_api.main import app

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT)

"""Run the idempotent fetch service locally.

Configuration comes from ``IDEMPOTENCY_*`` environment variables, e.g.::

    IDEMPOTENCY_STORAGE_BACKEND=dynamodb \
    IDEMPOTENCY_TABLE_NAME=idempotency \
    IDEMPOTENCY_DYNAMODB_ENDPOINT_URL=http://localhost:8001 \
    python demo_app.py

Then try::

    curl -X POST http://localhost:8000/helloidem \
        -H "Content-Type: application/json" \
        -d '{"address": "https://checkip.amazonaws.com", "delay": 8}'

The first call fetches and stores the result; calls with the same address
while it runs get 409, later ones get the cached 200 until the result
expires (1 hour by default).
"""

import uvicorn

from idempotent_fetch.adapters.asgi import create_app_from_env

app = create_app_from_env()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")

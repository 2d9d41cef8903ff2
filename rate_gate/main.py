from __future__ import annotations

import uvicorn

from rate_gate.core.app_factory import create_app

app = create_app()


if __name__ == "__main__":
    uvicorn.run("rate_gate.main:app", host="0.0.0.0", port=8000)

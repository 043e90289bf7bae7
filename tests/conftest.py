# tests/conftest.py
import threading

import pytest
from werkzeug.serving import make_server

from target_app import create_app


@pytest.fixture
def target():
    """Serve the target app on an ephemeral port; yields (base_url, app)."""
    app = create_app()
    srv = make_server("127.0.0.1", 0, app, threaded=True)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    try:
        yield f"http://127.0.0.1:{srv.server_port}", app
    finally:
        srv.shutdown()
        t.join(timeout=5)

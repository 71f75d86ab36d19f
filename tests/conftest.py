import pytest                                  # Pytest framework for fixtures

import src.api.app as app_module               # Module holding rate-limit and session state


@pytest.fixture(autouse=True)
def reset_api_state():
    """Start every test with an empty rate-limit window and session store"""
    app_module.rate_limit_store.clear()        # Forget earlier requests from the test client
    app_module.sessions.reset()                # Drop sessions created by other tests
    yield
    app_module.rate_limit_store.clear()
    app_module.sessions.reset()

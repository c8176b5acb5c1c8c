"""Smoke test for application startup."""


def test_app_imports() -> None:
    """Verify the app can be imported without errors."""
    from nftstatus.main import app

    assert app.title == "NFTStatus"


def test_routes_registered() -> None:
    from nftstatus.main import app

    paths = {route.path for route in app.routes}
    assert {
        "/health",
        "/ready",
        "/nft/status",
        "/nft/aggregate-counts",
        "/nft/ownership",
        "/nft/status/cache",
    } <= paths

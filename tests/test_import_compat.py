import server


EXPECTED_SERVER_EXPORTS = (
    "build_app",
    "create_app",
    "seed_token_store",
    "main",
)


def test_server_export_surface() -> None:
    missing = [name for name in EXPECTED_SERVER_EXPORTS if not hasattr(server, name)]
    assert missing == []

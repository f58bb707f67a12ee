from propertyhub.config import Settings
from propertyhub.services.image_locations import is_valid_image_location


def test_uploads_public_path_is_normalised():
    assert Settings(uploads_public_path="media/").uploads_public_path == "/media"
    assert Settings(uploads_public_path="   ").uploads_public_path == "/api/uploads"
    assert Settings(uploads_public_path="https://cdn.example.com/u/").uploads_public_path == "https://cdn.example.com/u"


def test_environment_variables_override_defaults(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("PROPERTY_IMAGES_CHECK_TTL_SECONDS", "5")
    monkeypatch.setenv("CORS_ORIGINS", '["https://app.example.com"]')

    settings = Settings()

    assert settings.is_production is True
    assert settings.property_images_check_ttl_seconds == 5
    assert settings.cors_origins == ["https://app.example.com"]


def test_default_upload_prefix_is_an_accepted_image_location():
    settings = Settings()
    assert is_valid_image_location(f"{settings.uploads_public_path}/properties/a.jpg")


def test_upload_rate_limit_defaults(monkeypatch):
    monkeypatch.delenv("IMAGE_UPLOAD_RATE_LIMIT", raising=False)
    monkeypatch.delenv("IMAGE_UPLOAD_RATE_WINDOW_SECONDS", raising=False)

    settings = Settings()

    assert settings.image_upload_rate_limit == 20
    assert settings.image_upload_rate_window_seconds == 60

from mls_api.config.initialize import settings
from mls_api.type_defs import JsonObject


def display_settings() -> list[dict[str, str | JsonObject]]:
    """Every config section with secrets masked, for ``mls_admin show-settings``."""

    return [
        {"section": name.capitalize(), "fields": section.to_display_dict()}
        for name, section in settings.sections.items()
    ]

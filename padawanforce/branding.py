"""Centralized branding constants — single source of truth for version.

The software version reported to the update check comes from here.
"""


class AppBranding:
    """Application identity constants."""

    APP_NAME = "PadAwan-Force"
    VERSION = "1.0.0"

    @classmethod
    def software_version(cls) -> str:
        """Installed software version in the same form the release feed uses."""
        return f"v{cls.VERSION}"

    @classmethod
    def user_agent(cls) -> str:
        # GitHub rejects API requests without a User-Agent
        return f"{cls.APP_NAME}-Updater/{cls.VERSION}"

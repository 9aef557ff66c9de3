import os
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_CONFIG_PATH = "~/.config/mcp-mailbox-server/config.toml"
CONFIG_PATH = Path(os.getenv("MCP_MAILBOX_SERVER_CONFIG_PATH", DEFAULT_CONFIG_PATH)).expanduser()

MASKED_SECRET = "********"  # noqa: S105


class MailAccount(BaseModel):
    """A single IMAP account. Supplied per call and never written back by the mailbox layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # `email`/`password`/`name` are accepted for accounts copied from older JSON account lists
    address: str = Field(validation_alias=AliasChoices("address", "email"))
    secret: str = Field(validation_alias=AliasChoices("secret", "password"))
    display_name: str = Field(default="", validation_alias=AliasChoices("display_name", "name"))
    host: str | None = None
    port: int | None = None
    use_ssl: bool = True
    timeout: float = 30.0

    @model_validator(mode="after")
    def _default_display_name(self) -> "MailAccount":
        if not self.display_name:
            object.__setattr__(self, "display_name", self.address)
        return self

    def masked(self) -> "MailAccount":
        return self.model_copy(update={"secret": MASKED_SECRET})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MCP_MAILBOX_SERVER_",
        toml_file=CONFIG_PATH,
        extra="ignore",
    )

    accounts: list[MailAccount] = Field(default_factory=list)

    # Shared server defaults for accounts that do not name their own host/port
    imap_host: str | None = None
    imap_port: int = 993
    use_ssl: bool = True

    default_folder: str = "INBOX"
    default_limit: int = Field(default=50, ge=1)
    search_folders: list[str] = Field(default_factory=lambda: ["INBOX", "Sent", "INBOX.Sent"])
    search_limit_per_folder: int = Field(default=50, ge=1)
    default_move_target: str = "INBOX.Processed"

    operation_timeout: float = 120.0
    enable_move: bool = True

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_server_defaults(self) -> "Settings":
        resolved = []
        for account in self.accounts:
            update = {}
            if account.host is None and self.imap_host:
                update["host"] = self.imap_host
            if account.port is None:
                update["port"] = self.imap_port
            if "use_ssl" not in account.model_fields_set:
                update["use_ssl"] = self.use_ssl
            resolved.append(account.model_copy(update=update) if update else account)
        self.accounts = resolved
        return self

    def get_accounts(self) -> list[MailAccount]:
        return list(self.accounts)

    def get_account(self, address: str | None = None) -> MailAccount | None:
        """Look up an account by address, or return the first configured one."""
        if not self.accounts:
            return None
        if address is None:
            return self.accounts[0]
        for account in self.accounts:
            if account.address.lower() == address.lower():
                return account
        return None


_settings: Settings | None = None


def get_settings(reload: bool = False) -> Settings:
    global _settings
    if _settings is None or reload:
        _settings = Settings()
    return _settings

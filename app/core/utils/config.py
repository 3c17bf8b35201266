import tomllib
from functools import cached_property
from pathlib import Path
from typing import ClassVar

from pydantic import computed_field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from app.modules.raffle.types_raffle import DrawAlgorithm
from app.types.exceptions import (
    DotenvInvalidVariableError,
    DotenvMissingVariableError,
)


class Settings(BaseSettings):
    """
    Settings for Tombola
    The class is based on a yaml configuration file: `/config.yaml`.

    All undefined variables will be populated from:
    1. An environment variable
    2. A yaml config.yaml file
    3. The dotenv .env file

    Support for dotenv is kept for compatibility reason but is deprecated. YAML file should be used instead.

    See [Pydantic Settings documentation](https://docs.pydantic.dev/latest/concepts/pydantic_settings/#dotenv-env-support) for more information.
    See [FastAPI settings](https://fastapi.tiangolo.com/advanced/settings/) article for best practices with settings.

    To access these settings, the `get_settings` dependency should be used.
    """

    # By default, the settings are loaded from the `config.yaml` or `.env` file but this behaviour can be overridden using
    # `_env_file` and `_yaml_file` parameter during instantiation
    # Ex: `Settings(_env_file=".env.dev", _yaml_file="config.dev.yaml")`
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        case_sensitive=False,
        extra="ignore",
    )

    # Currently Pydantic does not support overriding the yaml file path using the `_yaml_file` parameter
    # as it does for the `_env_file` parameter.
    # See https://github.com/pydantic/pydantic-settings/issues/259
    # We thus override the `_yaml_file` manually during the class instantiation
    _yaml_file: ClassVar[str]

    def __init__(self, _yaml_file, _env_file, **kwargs):
        Settings._yaml_file = _yaml_file
        super().__init__(_env_file=_env_file, **kwargs)

    # The order of these sources define their precedence:
    # parameters passed an initialization arguments will have
    # precedence over environment variables, yaml file and dotenv
    # See https://docs.pydantic.dev/latest/concepts/pydantic_settings/#important-notes
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
            YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_file),
            dotenv_settings,
        )

    ###################
    # Server settings #
    ###################

    # By default, only production's records are logged
    LOG_DEBUG_MESSAGES: bool = False

    # Origins for the CORS middleware. `["http://localhost"]` can be used for development.
    # See https://fastapi.tiangolo.com/tutorial/cors/
    # It should begin with 'http://' or 'https:// and should never end with a '/'
    CORS_ORIGINS: list[str]

    ############################
    # PostgreSQL configuration #
    ############################
    # If set, the application use a SQLite database instead of PostgreSQL, for testing or development purposes (if possible Postgresql should be used instead)
    SQLITE_DB: str | None = None
    POSTGRES_HOST: str = ""
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    DATABASE_DEBUG: bool = False  # If True, the database will log all queries

    ########################
    # Redis configuration #
    ########################
    # Redis configuration is needed to use the rate limiter, or multiple uvicorn workers
    # We use the default redis configuration, so the protected mode is enabled by default (see https://redis.io/docs/manual/security/#protected-mode)
    # If you want to use a custom configuration, a password and a specific binds should be used to avoid security issues
    REDIS_HOST: str | None = None
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str | None = None
    REDIS_LIMIT: int = 1000
    REDIS_WINDOW: int = 60

    # Rate limit requests based on REDIS_LIMIT and REDIS_WINDOW
    # A working Redis client is required to use the rate limiter
    ENABLE_RATE_LIMITER: bool = True

    ##########
    # Raffle #
    ##########

    # Purchases, manual grants and draws are each run in a single database transaction.
    # A transaction taking longer than RAFFLE_TRANSACTION_TIMEOUT seconds is aborted and reported as a `Timeout` error
    RAFFLE_TRANSACTION_TIMEOUT: float = 30
    # Maximum time, in seconds, a transaction may wait for a row lock (balance, entry or raffle row).
    # Only applied on PostgreSQL, using `SET LOCAL lock_timeout`
    RAFFLE_LOCK_TIMEOUT: float = 20

    # Generator used by new draws. The generator is stored with each draw, changing this value does not affect past draws
    RAFFLE_DRAW_ALGORITHM: DrawAlgorithm = DrawAlgorithm.lcg

    # Maximum number of predetermined winners an administrator may configure for a raffle
    RAFFLE_MAX_RIGGED_WINNERS: int = 5

    # Tickets an administrator may grant to a single user, on top of the raffle `max_tickets_per_user`.
    # Use `null` to only apply the raffle cap
    RAFFLE_MANUAL_ENTRY_MAX_TICKETS: int | None = 50
    # If True, manual grants can not exceed the raffle `total_tickets_cap`
    RAFFLE_MANUAL_ENTRY_ENFORCE_TOTAL_CAP: bool = True
    # If True, manual grants on subscriber only raffles are restricted to subscribers
    RAFFLE_MANUAL_ENTRY_ENFORCE_SUB_ONLY: bool = False

    #############################
    # pyproject.toml parameters #
    #############################

    @computed_field  # type: ignore[prop-decorator]
    @cached_property
    def TOMBOLA_VERSION(cls) -> str:
        with Path("pyproject.toml").open("rb") as pyproject_binary:
            pyproject = tomllib.load(pyproject_binary)
        return str(pyproject["project"]["version"])

    ######################################
    # Automatically generated parameters #
    ######################################

    @computed_field  # type: ignore[prop-decorator]
    @cached_property
    def REDIS_URL(cls) -> str | None:
        if cls.REDIS_HOST:
            # We need to include `:` before the password
            return (
                f"redis://:{cls.REDIS_PASSWORD or ''}@{cls.REDIS_HOST}:{cls.REDIS_PORT}"
            )
        return None

    #######################################
    #          Fields validation          #
    #######################################

    @model_validator(mode="after")
    def check_database_settings(self) -> "Settings":
        """
        All fields are optional, but the dotenv should configure SQLITE_DB or a Postgres database
        """
        if not (
            self.SQLITE_DB
            or (
                self.POSTGRES_HOST
                and self.POSTGRES_USER
                and self.POSTGRES_PASSWORD
                and self.POSTGRES_DB
            )
        ):
            raise DotenvMissingVariableError(  # noqa: TRY003
                "Either SQLITE_DB or POSTGRES_HOST, POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB",
            )

        return self

    @model_validator(mode="after")
    def check_raffle_settings(self) -> "Settings":
        if self.RAFFLE_TRANSACTION_TIMEOUT <= 0 or self.RAFFLE_LOCK_TIMEOUT <= 0:
            raise DotenvInvalidVariableError(  # noqa: TRY003
                "RAFFLE_TRANSACTION_TIMEOUT and RAFFLE_LOCK_TIMEOUT must be positive",
            )
        if self.RAFFLE_MAX_RIGGED_WINNERS < 0:
            raise DotenvInvalidVariableError(  # noqa: TRY003
                "RAFFLE_MAX_RIGGED_WINNERS can not be negative",
            )
        if (
            self.RAFFLE_MANUAL_ENTRY_MAX_TICKETS is not None
            and self.RAFFLE_MANUAL_ENTRY_MAX_TICKETS <= 0
        ):
            raise DotenvInvalidVariableError(  # noqa: TRY003
                "RAFFLE_MANUAL_ENTRY_MAX_TICKETS must be positive or null",
            )

        return self

    @model_validator(mode="after")
    def init_cached_property(self) -> "Settings":
        """
        Cached property are not computed during the instantiation of the class, but when they are accessed for the first time.
        By calling them in this validator, we force their initialization during the instantiation of the class.
        This allow them to raise error on startup if they are not correctly configured instead of creating an error on runtime.
        """
        self.TOMBOLA_VERSION  # noqa: B018
        self.REDIS_URL  # noqa: B018

        return self


def construct_prod_settings() -> Settings:
    """
    Return the production settings
    """
    return Settings(_env_file=".env", _yaml_file="config.yaml")

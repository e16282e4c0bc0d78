"""
btc-handshake - Configuration Management
==========================================
Configurazione centralizzata con Pydantic Settings.
Supporta file TOML, environment variables, file .env, override runtime.

Last Updated: 2026-10-19
Version: 1.0.0

Precedenza (alta -> bassa):
- Parametri espliciti (override)
- Environment variables con prefisso BTC_
- File .env
- File TOML (es. mainnet_config.toml)
- Preset della rete selezionata
"""

from pathlib import Path
from typing import Optional, List, Tuple, Type
from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from btc_handshake.constants import (
    NETWORK_PRESETS,
    SUPPORTED_NETWORKS,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_BACKOFF_MAX,
    DEFAULT_SERVICES,
    MAX_USER_AGENT_LENGTH,
)
from btc_handshake.errors import ConfigError, InvalidConfigError
from btc_handshake.utils.serialization import start_string_to_magic
from btc_handshake.utils.validators import (
    validate_hex,
    validate_start_string,
    validate_endpoint_string,
)


DEFAULT_CONFIG_FILE = Path("mainnet_config.toml")


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

class HandshakeSettings(BaseSettings):
    """
    Configurazione handshake.

    Example:
        # Da environment
        export BTC_NETWORK=testnet
        export BTC_HANDSHAKE_TIMEOUT=5

        # Da codice
        config = HandshakeSettings(network="regtest")

        # Da file TOML (env ha precedenza sul file)
        config = HandshakeSettings.from_file(Path("mainnet_config.toml"))
    """

    model_config = SettingsConfigDict(
        env_prefix='BTC_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    # ========================================================================
    # NETWORK SELECTION
    # ========================================================================

    network: str = Field(
        default="mainnet",
        description="Network: mainnet, testnet, regtest, signet"
    )

    # Campi None vengono riempiti dal preset della rete
    dns_seed: Optional[str] = Field(
        default=None,
        description="DNS seed da risolvere in endpoint"
    )

    network_port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="Porta P2P dei peer"
    )

    start_string: Optional[str] = Field(
        default=None,
        description="Magic di rete in hex (es. f9beb4d9)"
    )

    max_nbits: Optional[str] = Field(
        default=None,
        description="Target massimo (compact nBits, hex)"
    )

    # ========================================================================
    # PEERS
    # ========================================================================

    peers: List[str] = Field(
        default_factory=list,
        description="Endpoint espliciti (host:port); se presenti il seed non viene usato"
    )

    max_peers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Numero massimo di endpoint da contattare"
    )

    local_address: Optional[str] = Field(
        default=None,
        description="Indirizzo locale annunciato (None = socket locale)"
    )

    local_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Porta locale annunciata"
    )

    # ========================================================================
    # HANDSHAKE
    # ========================================================================

    handshake_timeout: float = Field(
        default=DEFAULT_HANDSHAKE_TIMEOUT,
        gt=0,
        le=600,
        description="Deadline per singolo peer (secondi)"
    )

    connect_timeout: float = Field(
        default=DEFAULT_CONNECT_TIMEOUT,
        gt=0,
        le=300,
        description="Timeout apertura connessione TCP (secondi)"
    )

    max_concurrency: int = Field(
        default=DEFAULT_MAX_CONCURRENCY,
        ge=1,
        le=10000,
        description="Handshake simultanei massimi"
    )

    retry_attempts: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Retry su errori di trasporto (0 = nessun retry)"
    )

    retry_backoff: float = Field(
        default=DEFAULT_RETRY_BACKOFF,
        ge=0,
        description="Backoff base tra retry (secondi)"
    )

    retry_backoff_max: float = Field(
        default=DEFAULT_RETRY_BACKOFF_MAX,
        ge=0,
        description="Backoff massimo tra retry (secondi)"
    )

    services: int = Field(
        default=DEFAULT_SERVICES,
        ge=0,
        description="Service flags annunciati"
    )

    user_agent: str = Field(
        default="",
        max_length=MAX_USER_AGENT_LENGTH,
        description="User agent annunciato (vuoto = nessuno)"
    )

    start_height: int = Field(
        default=0,
        ge=0,
        description="Altezza chain annunciata"
    )

    relay: Optional[int] = Field(
        default=None,
        ge=0,
        le=255,
        description="Byte relay opzionale (None = omesso)"
    )

    # ========================================================================
    # LOGGING
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level"
    )

    log_format: str = Field(
        default="text",
        description="Formato log: text, json"
    )

    log_to_file: bool = Field(
        default=False,
        description="Salva log su file"
    )

    log_dir: Path = Field(
        default=Path("./logs"),
        description="Directory log"
    )

    # ========================================================================
    # SOURCES
    # ========================================================================

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator('network')
    @classmethod
    def validate_network(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in SUPPORTED_NETWORKS:
            raise ValueError(f"Invalid network: {v}. Must be one of {list(SUPPORTED_NETWORKS)}")
        return v_lower

    @field_validator('start_string')
    @classmethod
    def validate_start_string(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_start_string(v)

    @field_validator('max_nbits')
    @classmethod
    def validate_max_nbits(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_hex(v, length=8)

    @field_validator('peers')
    @classmethod
    def validate_peers(cls, v: List[str]) -> List[str]:
        return [validate_endpoint_string(peer) for peer in v]

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('text', 'json'):
            raise ValueError(f"Invalid log_format: {v}. Must be 'text' or 'json'")
        return v_lower

    # ========================================================================
    # POST-INIT PROCESSING
    # ========================================================================

    def model_post_init(self, __context) -> None:
        """Completa i campi mancanti dal preset della rete"""
        preset = NETWORK_PRESETS[self.network]

        if self.start_string is None:
            self.start_string = preset["start_string"]
        if self.network_port is None:
            self.network_port = preset["network_port"]
        if self.dns_seed is None:
            self.dns_seed = preset["dns_seed"]
        if self.max_nbits is None:
            self.max_nbits = preset["max_nbits"]

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    @property
    def magic(self) -> bytes:
        """Magic bytes come scritti sul wire"""
        return start_string_to_magic(self.start_string)

    def is_mainnet(self) -> bool:
        return self.network == "mainnet"

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_file(cls, path: Path, **overrides) -> "HandshakeSettings":
        """
        Carica config da file TOML.

        Environment variables e .env mantengono la precedenza sul file.

        Raises:
            ConfigError: Se il file non esiste
            InvalidConfigError: Se il contenuto non è valido
        """
        path = Path(path)
        if not path.is_file():
            raise ConfigError(
                f"Config file not found: {path}",
                code="CONFIG_NOT_FOUND",
                details={"path": str(path)}
            )

        file_settings_cls = type(
            cls.__name__,
            (cls,),
            {"model_config": SettingsConfigDict(toml_file=path)},
        )
        return build_settings(file_settings_cls, **overrides)

    def __repr__(self) -> str:
        return (
            f"HandshakeSettings("
            f"network={self.network}, "
            f"start_string={self.start_string}, "
            f"dns_seed={self.dns_seed}, "
            f"network_port={self.network_port})"
        )


# ============================================================================
# FACTORIES
# ============================================================================

def build_settings(settings_cls: Type[HandshakeSettings] = HandshakeSettings, **kwargs) -> HandshakeSettings:
    """
    Istanzia settings convertendo errori pydantic in InvalidConfigError.
    """
    try:
        return settings_cls(**kwargs)
    except ValidationError as e:
        raise InvalidConfigError(
            "Invalid configuration",
            code="CONFIG_INVALID",
            details={
                "errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ]
            }
        ) from e


def load_settings(config_file: Optional[Path] = None, **overrides) -> HandshakeSettings:
    """
    Carica settings da file (se presente) più environment.

    Args:
        config_file: File TOML; None = solo environment/.env
        **overrides: Valori espliciti (precedenza massima)
    """
    clean = {k: v for k, v in overrides.items() if v is not None}
    if config_file is None:
        return build_settings(**clean)
    return HandshakeSettings.from_file(config_file, **clean)


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

@lru_cache(maxsize=1)
def get_settings() -> HandshakeSettings:
    """
    Singleton HandshakeSettings da environment.

    Example:
        >>> config = get_settings()
        >>> config.start_string
        'f9beb4d9'
    """
    return build_settings()


def reload_settings() -> HandshakeSettings:
    """Ricarica settings (invalida cache)"""
    get_settings.cache_clear()
    return get_settings()


def override_settings(**kwargs) -> HandshakeSettings:
    """
    Settings con valori custom, utile per testing.

    Example:
        >>> test_config = override_settings(network="regtest", handshake_timeout=1)
    """
    return build_settings(**kwargs)


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "HandshakeSettings",
    "DEFAULT_CONFIG_FILE",
    "build_settings",
    "load_settings",
    "get_settings",
    "reload_settings",
    "override_settings",
]

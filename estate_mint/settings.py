# estate_mint/settings.py
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ABI_DIR = Path(__file__).resolve().parent / "abi"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DATABASE_URL: str = "sqlite:///./estate_mint.db"

    # chain the deployment resolves from the registry, plus its seed values
    CHAIN_NAME: str = "unichain"
    DEFAULT_CHAIN_RPC: str = "https://sepolia.unichain.org"
    DEFAULT_CHAIN_ID: int = 1301
    PROPERTY_CONTRACT_ADDRESS: Optional[str] = None
    MARKETPLACE_CONTRACT_ADDRESS: Optional[str] = None

    PROPERTY_ABI_PATH: str = str(ABI_DIR / "property.json")
    MARKETPLACE_ABI_PATH: str = str(ABI_DIR / "marketplace.json")

    # presence of a key enables server-side broadcasting of mint transactions
    PRIVATE_KEY: Optional[str] = None

    PINATA_JWT: Optional[str] = None
    PINATA_API_KEY: Optional[str] = None
    PINATA_API_SECRET: Optional[str] = None
    PINATA_GATEWAY_URL: str = "https://gateway.pinata.cloud/ipfs/"

    PUBLISH_TIMEOUT: float = 8.0
    REGISTRY_TIMEOUT: float = 5.0
    RPC_TIMEOUT: float = 30.0
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024

    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"
    HOST: str = "127.0.0.1"
    PORT: int = 8080

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()

# =====================================================
# FILE: app/core/config.py
# Application Configuration Settings
# =====================================================
from pydantic_settings import BaseSettings
from pydantic import field_validator, ConfigDict, Field
from typing import Optional, List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Settings(BaseSettings):
    # Application Settings
    APP_NAME: str = "AXON"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # CORS Settings
    CORS_ORIGINS: List[str] = ["*"]

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./axon.db"
    DB_ECHO: bool = False

    # Document uploads and fetched links
    MAX_UPLOAD_SIZE: int = 20 * 1024 * 1024
    DOCUMENT_FETCH_TIMEOUT: float = 30.0

    # Credential identifiers
    CERTIFICATE_ID_PREFIX: str = "AXON-CERT-"

    # Blockchain Configuration (Polygon JSON-RPC)
    POLYGON_RPC_URL: str = "https://rpc-amoy.polygon.technology"
    POLYGON_PRIVATE_KEY: Optional[str] = Field(default=None, repr=False)
    POLYGON_NETWORK: str = "amoy"
    POLYGON_NETWORK_LABEL: str = "Polygon Amoy Testnet"
    RPC_TIMEOUT: float = 15.0
    CHAIN_GAS_LIMIT: Optional[int] = None

    @field_validator('POLYGON_PRIVATE_KEY', mode='before')
    @classmethod
    def blank_key_is_missing(cls, v):
        """Treat an empty POLYGON_PRIVATE_KEY= line in .env as unset"""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('RPC_TIMEOUT')
    @classmethod
    def positive_timeout(cls, v):
        if v <= 0:
            raise ValueError("RPC_TIMEOUT must be positive")
        return v

    # Pydantic v2 configuration
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def explorer_base_url(self) -> str:
        """polygonscan host for the configured network"""
        network = (self.POLYGON_NETWORK or "").strip().lower()
        if not network or network == "mainnet":
            return "https://polygonscan.com"
        return f"https://{network}.polygonscan.com"

# Create settings instance
settings = Settings()

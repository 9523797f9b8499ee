import os
import json
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from dotenv import load_dotenv

DEFAULT_DATA_DIR = "data"


def build_networks(env=None) -> Dict[str, str]:
    """Map each supported network name to its RPC endpoint."""
    env = os.environ if env is None else env
    networks = {"localhost": env.get("LOCALHOST_RPC_URL", "http://localhost:8545")}
    infura = {
        "sepolia": env.get("SEPOLIA_API"),
        "goerli": env.get("GOERLI_API"),
        "mainnet": env.get("MAINNET_API"),
    }
    for name, key in infura.items():
        if key:
            networks[name] = f"https://{name}.infura.io/v3/{key}"
    return networks


def load_or_create_config(data_dir):
    """Read <data_dir>/config.json, generating a JWT secret on first run."""
    config_file = os.path.join(data_dir, "config.json")
    config = {}
    if os.path.exists(config_file):
        with open(config_file, "r") as f:
            config = json.load(f)

    if "jwt_secret" not in config:
        config["jwt_secret"] = uuid.uuid4().hex + uuid.uuid4().hex
        with open(config_file, "w") as f:
            json.dump(config, f, indent=2)

    return config


@dataclass
class Settings:
    data_dir: str = DEFAULT_DATA_DIR
    upload_dir: str = ""
    mongo_uri: str = ""
    jwt_secret: str = ""
    token_max_age_days: int = 3
    networks: Dict[str, str] = field(default_factory=dict)
    rpc_timeout: float = 10.0
    rpc_retries: int = 2
    reader_private_key: Optional[str] = None
    min_issuance_balance: Decimal = Decimal("0.002")
    min_deploy_balance: Decimal = Decimal("0.0075")
    verify_base_url: str = "http://localhost:3000/documents"
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None

    def __post_init__(self):
        if not self.upload_dir:
            self.upload_dir = os.path.join(self.data_dir, "uploads")
        if not self.networks:
            self.networks = build_networks({})


def load_settings(env=None) -> Settings:
    """Build Settings from the environment (after reading a .env file)."""
    if env is None:
        load_dotenv()
        env = os.environ

    data_dir = os.path.abspath(env.get("CERTTRUST_DATA_DIR", DEFAULT_DATA_DIR))
    os.makedirs(data_dir, exist_ok=True)
    config = load_or_create_config(data_dir)

    smtp_port = env.get("SMTP_PORT")
    return Settings(
        data_dir=data_dir,
        upload_dir=env.get("CERTTRUST_UPLOAD_DIR", ""),
        mongo_uri=env.get("MONGO_URI", ""),
        jwt_secret=env.get("JWT_SECRET") or config["jwt_secret"],
        token_max_age_days=int(env.get("TOKEN_MAX_AGE_DAYS", "3")),
        networks=build_networks(env),
        rpc_timeout=float(env.get("RPC_TIMEOUT", "10")),
        rpc_retries=int(env.get("RPC_RETRIES", "2")),
        reader_private_key=env.get("READER_PRIVATE_KEY") or None,
        min_issuance_balance=Decimal(env.get("MIN_ISSUANCE_BALANCE_ETH", "0.002")),
        min_deploy_balance=Decimal(env.get("MIN_DEPLOY_BALANCE_ETH", "0.0075")),
        verify_base_url=env.get("VERIFY_BASE_URL", "http://localhost:3000/documents").rstrip("/"),
        smtp_host=env.get("SMTP_HOST"),
        smtp_port=int(smtp_port) if smtp_port else None,
        smtp_user=env.get("SMTP_USER"),
        smtp_pass=env.get("SMTP_PASS"),
        smtp_from=env.get("SMTP_FROM", env.get("SMTP_USER")),
    )

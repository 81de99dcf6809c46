import uvicorn
from dotenv import load_dotenv
import os
from pathlib import Path
import logging

# Configure logging before any application imports to ensure visibility
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s RUN_DEV.PY - [%(levelname)s] - %(message)s'
)
logger = logging.getLogger("run_dev_script")

_TRUTHY = ["true", "1", "yes", "on", "t"]

if __name__ == "__main__":
    project_root = Path(__file__).parent.resolve()
    dotenv_path_explicit = project_root / ".env"

    if dotenv_path_explicit.exists():
        logger.info(f".env file FOUND at: {dotenv_path_explicit}")
        load_dotenv(dotenv_path=dotenv_path_explicit, override=True)
    else:
        logger.warning(f".env file NOT FOUND at: {dotenv_path_explicit}. "
                       "Will rely on OS environment variables or pydantic-settings defaults.")

    # Never log the secret itself
    logger.info(f"JWT_SECRET: {'********' if os.getenv('JWT_SECRET') else 'None (startup will fail)'}")
    logger.info(f"DEBUG_MODE: {os.getenv('DEBUG_MODE')}")
    logger.info(f"FEDERATION_CLIENT_ID: {os.getenv('FEDERATION_CLIENT_ID') or 'None (federation disabled)'}")
    logger.info(f"FEDERATION_ASSERTION_VERIFICATION: {os.getenv('FEDERATION_ASSERTION_VERIFICATION')}")

    host = os.getenv("DEV_SERVER_HOST", "127.0.0.1")
    port = int(os.getenv("DEV_SERVER_PORT", "8000"))
    uvicorn_log_level = os.getenv("DEV_SERVER_LOG_LEVEL", "info").lower()

    debug_mode_bool = os.getenv("DEBUG_MODE", "False").lower() in _TRUTHY
    reload_bool = os.getenv("DEV_SERVER_RELOAD", str(debug_mode_bool)).lower() in _TRUTHY

    logger.info(f"Starting Uvicorn server on {host}:{port} (reload: {reload_bool})")
    uvicorn.run(
        "authgate.main:app",
        host=host,
        port=port,
        log_level=uvicorn_log_level,
        reload=reload_bool
    )

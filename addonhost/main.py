from fastapi import FastAPI
import logging

from addonhost.config import get_settings
from addonhost.logging_config import setup_logging

settings = get_settings()
setup_logging(settings.log_dir)

app = FastAPI(
    title="addonhost",
    response_model_by_alias=False,
)

logger = logging.getLogger("addonhost.core")
logger.info("addonhost starting (root=%s, addons=%s)", settings.root_path, settings.addons_dir)

from addonhost.addons.api.router import router as addons_router  # noqa: E402

app.include_router(addons_router)


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok", "service": "addonhost"}

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pixelveil.config import load_config, load_transforms
from pixelveil.logging_config import configure_logging
from pixelveil.routers.images import router as images_router
from pixelveil.services.pipeline import PipelineOrchestrator


def create_app(config: Optional[Dict[str, Any]] = None, orchestrator: Optional[PipelineOrchestrator] = None) -> FastAPI:
	config = config or load_config()
	configure_logging(config["logging"]["level"], config["logging"].get("file"))

	app = FastAPI(title="PixelVeil - metadata-preserving image transform API", version="0.1.0")

	# CORS (adjust origins in production)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=False,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	app.state.orchestrator = orchestrator or PipelineOrchestrator(
		transforms=load_transforms(config),
		auto_action=config["auto_action"],
		jpeg_quality=config["jpeg_quality"],
	)

	# Routers
	app.include_router(images_router)

	return app


if __name__ == "__main__":
	# Local dev server: uvicorn pixelveil.main:create_app --factory --reload
	import uvicorn

	uvicorn.run("pixelveil.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)

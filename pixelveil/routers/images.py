from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, File, Form, HTTPException, Request, Response, UploadFile

from pixelveil.services.errors import NoImageLoadedError, TransformError
from pixelveil.services.pipeline import PipelineOrchestrator, TransformKind


router = APIRouter(prefix="/pipeline", tags=["images"])


def _orchestrator(request: Request) -> PipelineOrchestrator:
	return request.app.state.orchestrator


def _summary(orch: PipelineOrchestrator) -> Dict[str, Any]:
	return {
		**orch.status,
		"metadata": orch.current_metadata.to_dict(),
		"resource_endpoint": "/pipeline/resource",
	}


@router.post("/load", summary="Load a source image and run extraction / auto-action")
async def load(
	request: Request,
	file: UploadFile = File(...),
	preserve_metadata: bool = Form(True),
	skip_auto_action: bool = Form(False),
):
	orch = _orchestrator(request)
	data = await file.read()
	if not data:
		raise HTTPException(status_code=400, detail="empty upload")
	await orch.load_source(data, preserve_metadata=preserve_metadata, skip_auto_action=skip_auto_action)
	return _summary(orch)


@router.post("/transform/{kind}", summary="Encrypt or decrypt the image on display")
async def transform(request: Request, kind: TransformKind):
	orch = _orchestrator(request)
	try:
		await orch.apply_transform(kind)
	except NoImageLoadedError as e:
		raise HTTPException(status_code=409, detail=str(e))
	except TransformError as e:
		raise HTTPException(status_code=422, detail=str(e))
	return _summary(orch)


@router.get("/status", summary="Get pipeline status")
def status(request: Request):
	return _orchestrator(request).status


@router.get("/metadata", summary="Get the metadata snapshot of the current image")
def metadata(request: Request):
	return _orchestrator(request).current_metadata.to_dict()


@router.get("/resource", summary="Download the image currently on display")
def resource(request: Request):
	orch = _orchestrator(request)
	url = orch.current_resource
	if not url or not orch.resources.is_live(url):
		raise HTTPException(status_code=404, detail="no image on display")
	return Response(content=orch.resources.read(url), media_type=orch.resources.media_type(url))

from __future__ import annotations

from typing import Dict, List, Optional, Type

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status

from dealerdb.security import get_current_dealer
from dealerdb.apps.accounts import models as account_models

from . import errors, schemas, services
from .decoder import decode

router = APIRouter(prefix="/inventory", tags=["inventory"])

ERROR_STATUS: Dict[Type[errors.InventoryError], int] = {
    errors.SyncError: status.HTTP_502_BAD_GATEWAY,
    errors.PortalError: status.HTTP_502_BAD_GATEWAY,
    errors.StaleOverrideError: status.HTTP_409_CONFLICT,
    errors.LotExistsError: status.HTTP_409_CONFLICT,
    errors.LotNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.ImageNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.ImageLimitError: status.HTTP_400_BAD_REQUEST,
    errors.InvalidLotError: status.HTTP_400_BAD_REQUEST,
    errors.InvalidOverrideError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def http_error(exc: errors.InventoryError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, errors.SyncError):
        detail = {"lot_name": exc.lot_name, "message": exc.message}
    else:
        detail = str(exc)
    return HTTPException(status_code=status_code, detail=detail)


def get_runtime(request: Request) -> services.InventoryRuntime:
    return request.app.state.inventory


def _begin(runtime: services.InventoryRuntime, dealer: account_models.Dealer) -> str:
    """Start a request for `dealer`: its session cache is re-read from the stores."""
    dealer_id = str(dealer.id)
    runtime.begin_request(dealer_id)
    return dealer_id


# ---------------------------------------------------------------------------
# Decoder / read model
# ---------------------------------------------------------------------------


@router.post("/decode")
def decode_serial(
    payload: schemas.DecodeRequest,
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    return decode(payload.serial).as_dict()


@router.get("/buildings", response_model=List[schemas.BuildingRead])
async def list_buildings(
    include_hidden: bool = Query(True),
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    dealer_id = _begin(runtime, current_dealer)
    return await services.list_inventory(
        runtime.resolver_for(dealer_id),
        dealer_id=dealer_id,
        include_hidden=include_hidden,
    )


@router.delete("/buildings/{serial}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_building(
    serial: str,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    dealer_id = _begin(runtime, current_dealer)
    removed = await services.remove_building(
        runtime.resolver_for(dealer_id),
        dealer_id=dealer_id,
        serial=serial,
        images=runtime.images(dealer_id),
    )
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Building not found")
    return None


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------


@router.get("/overrides", response_model=List[schemas.OverrideRead])
async def list_overrides(
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    overrides = await runtime.overrides(_begin(runtime, current_dealer)).all_overrides()
    return [schemas.OverrideRead.model_validate(overrides[serial]) for serial in sorted(overrides)]


@router.get("/overrides/{serial}", response_model=schemas.OverrideRead)
async def get_override(
    serial: str,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    record = await runtime.overrides(_begin(runtime, current_dealer)).get_override(serial)
    return schemas.OverrideRead.model_validate(record)


@router.patch("/overrides/{serial}", response_model=schemas.OverrideRead)
async def patch_override(
    serial: str,
    payload: schemas.OverridePatch,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    store = runtime.overrides(_begin(runtime, current_dealer))
    try:
        record = await store.patch_override(serial, payload.fields(), expected_version=payload.expected_version)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.OverrideRead.model_validate(record)


# ---------------------------------------------------------------------------
# Lots and sync
# ---------------------------------------------------------------------------


@router.get("/lots", response_model=List[schemas.LotRead])
async def list_lots(
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    return [schemas.LotRead.model_validate(lot) for lot in await runtime.lots(_begin(runtime, current_dealer)).list_lots()]


@router.post("/lots", response_model=schemas.LotRead, status_code=status.HTTP_201_CREATED)
async def create_lot(
    payload: schemas.LotCreate,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    try:
        lot = await runtime.lots(_begin(runtime, current_dealer)).add_lot(payload.name, payload.username, payload.password)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.LotRead.model_validate(lot)


@router.post("/lots/sync-all", response_model=schemas.SyncAllRead)
async def sync_all_lots(
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    outcomes = await runtime.pipeline(_begin(runtime, current_dealer)).sync_all_lots()
    response = schemas.SyncAllRead()
    for lot_name, outcome in outcomes.items():
        if isinstance(outcome, str):
            response.errors[lot_name] = outcome
        else:
            response.results[lot_name] = schemas.SyncResultRead.model_validate(outcome)
    return response


@router.put("/lots/{name}", response_model=schemas.LotRead)
async def update_lot(
    name: str,
    payload: schemas.LotCredentialsUpdate,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    try:
        lot = await runtime.lots(_begin(runtime, current_dealer)).update_credentials(name, payload.username, payload.password)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.LotRead.model_validate(lot)


@router.delete("/lots/{name}", response_model=schemas.LotRemoved)
async def delete_lot(
    name: str,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    try:
        removed = await runtime.lots(_begin(runtime, current_dealer)).remove_lot(name)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.LotRemoved(name=name, overrides_removed=removed)


@router.post("/lots/{name}/sync", response_model=schemas.SyncResultRead)
async def sync_lot(
    name: str,
    payload: Optional[schemas.SyncRequest] = None,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    credentials = None
    if payload is not None and payload.username and payload.password:
        credentials = {"username": payload.username, "password": payload.password}
    try:
        result = await runtime.pipeline(_begin(runtime, current_dealer)).sync_lot(name, credentials)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.SyncResultRead.model_validate(result)


@router.post("/import", response_model=schemas.ImportResultRead)
async def import_inventory(
    payload: schemas.ImportRequest,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    result = await runtime.pipeline(_begin(runtime, current_dealer)).import_batch(payload.records, lot_name=payload.lot_name)
    return schemas.ImportResultRead.model_validate(result)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


@router.get("/buildings/{serial}/images", response_model=schemas.ImageList)
async def list_images(
    serial: str,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    images = await runtime.images(_begin(runtime, current_dealer)).get_images(serial)
    return schemas.ImageList(serial=serial, images=images)


@router.post("/buildings/{serial}/images", response_model=schemas.ImageList, status_code=status.HTTP_201_CREATED)
async def upload_image(
    serial: str,
    file: UploadFile = File(...),
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    reconciler = runtime.images(_begin(runtime, current_dealer))
    data = await file.read()
    try:
        await reconciler.upload_image(serial, file.filename or "image", data)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.ImageList(serial=serial, images=await reconciler.get_images(serial))


@router.delete("/buildings/{serial}/images", response_model=schemas.ImageList)
async def delete_image(
    serial: str,
    url: str = Query(...),
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    try:
        images = await runtime.images(_begin(runtime, current_dealer)).delete_image(serial, url)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.ImageList(serial=serial, images=images)


@router.post("/buildings/{serial}/images/main", response_model=schemas.ImageList)
async def set_main_image(
    serial: str,
    payload: schemas.MainImageRequest,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    try:
        images = await runtime.images(_begin(runtime, current_dealer)).set_main_image(serial, payload.url)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.ImageList(serial=serial, images=images)


@router.post("/buildings/{serial}/images/reorder", response_model=schemas.ImageList)
async def reorder_images(
    serial: str,
    payload: schemas.ReorderRequest,
    runtime: services.InventoryRuntime = Depends(get_runtime),
    current_dealer: account_models.Dealer = Depends(get_current_dealer),
):
    try:
        images = await runtime.images(_begin(runtime, current_dealer)).reorder(serial, payload.url, payload.target_index)
    except errors.InventoryError as exc:
        raise http_error(exc)
    return schemas.ImageList(serial=serial, images=images)

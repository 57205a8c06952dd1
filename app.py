import base64
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import derive_credential
from config import DATABASE_URL, LOG_FORMAT, LOG_LEVEL, MAX_UPLOAD_BYTES
from database import Base, engine, get_db
from errors import DecodeError, DimensionError
from image_utils import decode_data_url, hamming_distance, normalize_and_hash
from models import Account
from verification import register_generated, register_uploaded, verify

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

# Create database tables on startup (simple dev setup)
if DATABASE_URL.startswith("sqlite:///"):
    Path(DATABASE_URL[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Image Password Manager")


class UploadTooLarge(Exception):
    pass


class MissingImage(Exception):
    pass


class DuplicateName(Exception):
    pass


class AccountUpdate(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    notes: Optional[str] = None


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


async def read_upload(image: UploadFile) -> bytes:
    """Read an uploaded image, refusing anything above MAX_UPLOAD_BYTES."""
    data = await image.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadTooLarge(f"Image exceeds {MAX_UPLOAD_BYTES} bytes")
    return data


async def read_image_input(image: Optional[UploadFile], data_url: Optional[str]) -> bytes:
    """
    Image bytes from either a file upload or a 'data:image/...;base64,' field,
    as sent by a browser canvas.
    """
    if image is not None:
        return await read_upload(image)
    if data_url:
        data = decode_data_url(data_url)
        if len(data) > MAX_UPLOAD_BYTES:
            raise UploadTooLarge(f"Image exceeds {MAX_UPLOAD_BYTES} bytes")
        return data
    raise MissingImage("An image file or image data URL is required.")


def find_account(db: Session, account_id: str) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def name_taken(db: Session, name: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(Account).filter(Account.name == name)
    if exclude_id is not None:
        query = query.filter(Account.id != exclude_id)
    return query.first() is not None


def save_account(db: Session, name: str, username: str, notes: str, stored) -> Account:
    account = Account(
        name=name,
        username=username,
        notes=notes,
        password=stored.stored_value,
        type=stored.provenance.value,
    )
    db.add(account)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateName(name) from exc
    db.refresh(account)
    return account


@app.get("/")
def root():
    """Redirect root to the account list."""
    return RedirectResponse(url="/api/accounts")


# ---------------- Accounts ----------------

@app.get("/api/accounts")
def list_accounts(db: Session = Depends(get_db)):
    accounts = db.query(Account).order_by(Account.created_at.asc(), Account.name.asc()).all()
    return [account.to_dict() for account in accounts]


@app.get("/api/accounts/{account_id}")
def get_account(account_id: str, db: Session = Depends(get_db)):
    account = find_account(db, account_id)
    if not account:
        return error_response("Account not found.", 404)
    return account.to_dict()


@app.post("/api/accounts", status_code=201)
async def register_with_image(
    name: str = Form(...),
    username: str = Form(...),
    notes: str = Form(""),
    image: Optional[UploadFile] = File(None),
    image_data_url: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """
    Register an account whose password is derived from an uploaded image.
    """
    name, username = name.strip(), username.strip()
    if not name or not username:
        return error_response("Account name and username are required.", 400)
    if name_taken(db, name):
        return error_response("An account with this name already exists.", 409)

    try:
        data = await read_image_input(image, image_data_url)
        stored = register_uploaded(data)
    except MissingImage as e:
        return error_response(str(e), 400)
    except UploadTooLarge as e:
        return error_response(str(e), 413)
    except (DecodeError, DimensionError) as e:
        logger.info("Registration image rejected for %r: %s", name, e)
        return error_response(f"Could not process image: {e}", 400)

    try:
        account = save_account(db, name, username, notes.strip(), stored)
    except DuplicateName:
        return error_response("An account with this name already exists.", 409)
    logger.info("Registered account %s (%s)", account.id, account.type)
    return JSONResponse(
        {"ok": True, "message": "Account registered successfully.", "account": account.to_dict()},
        status_code=201,
    )


@app.post("/api/accounts/generate", status_code=201)
def register_with_generated_image(
    name: str = Form(...),
    username: str = Form(...),
    notes: str = Form(""),
    db: Session = Depends(get_db),
):
    """
    Register an account with a system-generated password image.

    The PNG is returned once, base64-encoded; the user must keep it.
    """
    name, username = name.strip(), username.strip()
    if not name or not username:
        return error_response("Account name and username are required.", 400)
    if name_taken(db, name):
        return error_response("An account with this name already exists.", 409)

    stored, png_bytes = register_generated()
    try:
        account = save_account(db, name, username, notes.strip(), stored)
    except DuplicateName:
        return error_response("An account with this name already exists.", 409)
    logger.info("Registered account %s (%s)", account.id, account.type)

    encoded = base64.b64encode(png_bytes).decode("ascii")
    return JSONResponse(
        {
            "ok": True,
            "message": "Account registered. Download the image: it is your password.",
            "account": account.to_dict(),
            "image_png_base64": encoded,
            "image_data_url": f"data:image/png;base64,{encoded}",
        },
        status_code=201,
    )


@app.put("/api/accounts/{account_id}")
def update_account(account_id: str, payload: AccountUpdate, db: Session = Depends(get_db)):
    """
    Update name, username or notes. The password and its type are fixed.

    Payload:
        {"name": "...", "username": "...", "notes": "..."}
    """
    account = find_account(db, account_id)
    if not account:
        return error_response("Account not found.", 404)

    name = (payload.name or account.name).strip()
    username = (payload.username or account.username).strip()
    if not name or not username:
        return error_response("Account name and username are required.", 400)
    if name_taken(db, name, exclude_id=account.id):
        return error_response("An account with this name already exists.", 409)

    account.name = name
    account.username = username
    if payload.notes is not None:
        account.notes = payload.notes.strip()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return error_response("An account with this name already exists.", 409)
    db.refresh(account)
    return {"ok": True, "message": "Account updated successfully.", "account": account.to_dict()}


@app.delete("/api/accounts/{account_id}")
def delete_account(account_id: str, db: Session = Depends(get_db)):
    account = find_account(db, account_id)
    if not account:
        return error_response("Account not found.", 404)
    db.delete(account)
    db.commit()
    logger.info("Deleted account %s", account_id)
    return {"ok": True, "message": "Account deleted successfully."}


# ---------------- Verification ----------------

@app.post("/api/accounts/{account_id}/verify")
async def verify_account(
    account_id: str,
    image: Optional[UploadFile] = File(None),
    image_data_url: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """
    Check an image against the account's password and, on success,
    reveal the username and notes.

    The image comes either as a file upload or as a data URL field.
    """
    account = find_account(db, account_id)
    if not account:
        return error_response("Account not found.", 404)

    try:
        data = await read_image_input(image, image_data_url)
        is_match = verify(account.stored_credential(), data)
    except MissingImage as e:
        return error_response(str(e), 400)
    except UploadTooLarge as e:
        return error_response(str(e), 413)
    except DecodeError as e:
        # ImageDecodeError from verify, or a malformed data URL
        return error_response(str(e), 400)

    if not is_match:
        logger.info("Verification failed for account %s", account.id)
        return error_response("Authentication failed. The image does not match.", 401)

    logger.info("Verification succeeded for account %s", account.id)
    return {
        "ok": True,
        "account": account.to_dict(),
    }


@app.post("/api/fingerprint")
async def fingerprint_image(
    image: Optional[UploadFile] = File(None),
    image_data_url: Optional[str] = Form(None),
    compare: Optional[UploadFile] = File(None),
    compare_data_url: Optional[str] = Form(None),
):
    """
    Fingerprint and derived credential of an image, for diagnostics.

    When a second image is given, also report how many fingerprint bits
    differ between the two.
    """
    try:
        fingerprint = normalize_and_hash(await read_image_input(image, image_data_url))
        other = None
        if compare is not None or compare_data_url:
            other = normalize_and_hash(await read_image_input(compare, compare_data_url))
    except MissingImage as e:
        return error_response(str(e), 400)
    except UploadTooLarge as e:
        return error_response(str(e), 413)
    except (DecodeError, DimensionError) as e:
        return error_response(f"Could not process image: {e}", 400)

    result = {
        "ok": True,
        "fingerprint": fingerprint,
        "credential": derive_credential(fingerprint),
    }
    if other is not None:
        result["compare_fingerprint"] = other
        result["distance"] = hamming_distance(fingerprint, other)
    return result

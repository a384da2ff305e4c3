import sqlite3

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from database.db import add_subject, get_all_subjects, get_subject_by_id

router = APIRouter()


class SubjectCreate(BaseModel):
    card_token: str
    display_name: str


@router.get("/subjects")
def subjects():
    return get_all_subjects()


@router.get("/subjects/{subject_id}")
def subject_detail(subject_id: int):
    row = get_subject_by_id(subject_id)
    if not row:
        raise HTTPException(status_code=404, detail="Subject not found.")
    return row


@router.post("/subjects")
def create_subject(payload: SubjectCreate):
    card_token = payload.card_token.strip()
    display_name = payload.display_name.strip()

    if not card_token or not display_name:
        raise HTTPException(status_code=400, detail="All fields are required.")

    try:
        new_id = add_subject(card_token, display_name)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Card is already registered.")

    return {
        "id": new_id,
        "card_token": card_token,
        "display_name": display_name,
    }
